"""Tests for the handler registrar."""

import logging

import pytest

from ripplex.registrar import HandlerKind, Registrar


@pytest.fixture
def registrar() -> Registrar:
    return Registrar()


def test_register_and_get(registrar: Registrar) -> None:
    """Test registering a handler and looking it up."""

    def handler() -> None:
        pass

    assert registrar.register("event", "test", handler) is handler
    assert registrar.get("event", "test") is handler
    assert registrar.get(HandlerKind.EVENT, "test") is handler
    assert registrar.has("event", "test")
    assert not registrar.has("effect", "test")
    assert registrar.get("event", "missing") is None


def test_overwrite_warns(
    registrar: Registrar, caplog: pytest.LogCaptureFixture
) -> None:
    """Test that overwriting a handler replaces it with a warning."""
    registrar.register("event", "test", print)
    with caplog.at_level(logging.WARNING):
        registrar.register("event", "test", repr)
    assert registrar.get("event", "test") is repr
    assert 'Event handler for "test" is being overwritten' in caplog.text


def test_overwrite_warning_disabled(caplog: pytest.LogCaptureFixture) -> None:
    """Test that the overwrite warning can be disabled."""
    registrar = Registrar(warn_on_overwrite=False)
    registrar.register("effect", "test", print)
    with caplog.at_level(logging.WARNING):
        registrar.register("effect", "test", repr)
    assert registrar.get("effect", "test") is repr
    assert "overwritten" not in caplog.text


def test_clear_single(registrar: Registrar) -> None:
    """Test clearing one handler leaves the others."""
    registrar.register("event", "a", print)
    registrar.register("event", "b", print)
    registrar.clear("event", "a")
    assert not registrar.has("event", "a")
    assert registrar.has("event", "b")


def test_clear_kind_and_all(registrar: Registrar) -> None:
    """Test clearing a kind and clearing everything."""
    registrar.register("event", "a", print)
    registrar.register("effect", "b", print)
    registrar.clear("event")
    assert not registrar.has("event", "a")
    assert registrar.has("effect", "b")
    registrar.clear()
    assert not registrar.has("effect", "b")


def test_clear_missing_warns(
    registrar: Registrar, caplog: pytest.LogCaptureFixture
) -> None:
    """Test clearing a handler that does not exist logs a warning."""
    with caplog.at_level(logging.WARNING):
        registrar.clear("event", "missing")
    assert "missing" in caplog.text

"""Tests for tracing."""

import asyncio
import logging
from unittest.mock import Mock

import pytest

from ripplex.config import TracingConfig
from ripplex.tracing import EventTrace, Tracer, trace_span


def make_trace(event_key: str = "test") -> EventTrace:
    return EventTrace(
        event_key=event_key,
        payload=None,
        state_before=0,
        state_after=1,
        effects={"db": 1},
        effects_executed=[],
        interceptors=["db-handler"],
        duration=0.0,
    )


async def test_traces_debounced() -> None:
    """Test traces emitted close together are delivered in one batch."""
    tracer = Tracer(TracingConfig(enabled=True, debounce_time=0.02))
    callback = Mock()
    tracer.register_trace_callback("test", callback)
    tracer.emit(make_trace("a"))
    tracer.emit(make_trace("b"))
    callback.assert_not_called()

    await asyncio.sleep(0.05)
    callback.assert_called_once()
    assert [t.event_key for t in callback.call_args.args[0]] == ["a", "b"]


async def test_disabled_tracer_drops_traces(caplog: pytest.LogCaptureFixture) -> None:
    tracer = Tracer()
    callback = Mock()
    with caplog.at_level(logging.WARNING):
        tracer.register_trace_callback("test", callback)
    assert "Tracing is not enabled" in caplog.text
    tracer.emit(make_trace())
    await asyncio.sleep(0.01)
    callback.assert_not_called()


async def test_callback_error_isolated(caplog: pytest.LogCaptureFixture) -> None:
    tracer = Tracer(TracingConfig(enabled=True, debounce_time=0))
    good = Mock()
    tracer.register_trace_callback("bad", Mock(side_effect=ValueError("boom")))
    tracer.register_trace_callback("good", good)
    tracer.emit(make_trace())
    await asyncio.sleep(0.01)
    good.assert_called_once()
    assert 'Error in trace callback "bad"' in caplog.text


def test_tracing_config_from_dict() -> None:
    config = TracingConfig.from_dict({"enabled": True})
    assert config.enabled
    assert config.debounce_time == 0.05


def test_trace_ids_increase() -> None:
    assert make_trace().id < make_trace().id


def test_trace_span_nesting(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="ripplex.tracing"):
        with trace_span("event inc") as outer:
            with trace_span("effect db") as inner:
                pass
    assert outer.label == "event inc"
    assert inner.label == "event inc > effect db"
    assert outer.duration >= inner.duration >= 0
    assert "[Trace] > event inc > effect db" in caplog.text

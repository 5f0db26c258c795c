"""Tests for the public store API."""

import asyncio
import logging
from typing import Any
from unittest.mock import Mock

import pytest

from ripplex import (
    ErrorContext,
    ErrorHandlerConfig,
    ErrorPhase,
    ManualScheduler,
    Store,
    create_store,
    path,
)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def store(scheduler: ManualScheduler) -> Store:
    store = create_store({"count": 0}, scheduler=scheduler)
    store.register_event_db(
        "inc", lambda cofx, payload: {**cofx["db"], "count": cofx["db"]["count"] + 1}
    )
    return store


async def test_sequential_dispatch(store: Store) -> None:
    for _ in range(3):
        await store.dispatch("inc")
    assert store.get_state() == {"count": 3}


async def test_concurrent_dispatch(store: Store) -> None:
    """Test concurrent dispatches are serialized."""
    await asyncio.gather(*(store.dispatch("inc") for _ in range(3)))
    assert store.get_state() == {"count": 3}


async def test_unregistered_event(
    store: Store, caplog: pytest.LogCaptureFixture
) -> None:
    """Test an unknown event resolves and does not stop the queue."""
    with caplog.at_level(logging.WARNING):
        missing = store.dispatch("missing")
        after = store.dispatch("inc")
        await missing
        await after
    assert 'No handler registered for event "missing"' in caplog.text
    assert store.get_state() == {"count": 1}


async def test_subscription_notified_once(
    store: Store, scheduler: ManualScheduler
) -> None:
    store.register_subscription("double", {"compute": lambda s: s["count"] * 2})
    store.register_event_db("set", lambda cofx, payload: {"count": payload})
    callback = Mock()
    store.subscribe("double", [], callback)
    callback.assert_called_once_with(0)

    await store.dispatch("set", 5)
    assert store.query("double", []) == 10
    scheduler.flush()
    assert callback.call_count == 2
    callback.assert_called_with(10)

    await store.dispatch("set", 5)
    scheduler.flush()
    assert callback.call_count == 2


async def test_derived_subscription(store: Store) -> None:
    store.register_subscription("double", {"compute": lambda s: s["count"] * 2})
    store.register_subscription(
        "double-plus-one", {"deps": ["double"], "combine": lambda deps: deps[0] + 1}
    )
    store.register_event_db("set", lambda cofx, payload: {"count": payload})
    await store.dispatch("set", 5)
    assert store.query("double-plus-one") == 11


async def test_on_state_change(scheduler: ManualScheduler) -> None:
    on_change = Mock()
    store = create_store({"count": 0}, on_state_change=on_change, scheduler=scheduler)
    store.register_event_db("set", lambda cofx, payload: {"count": payload})
    await store.dispatch("set", 1)
    await store.dispatch("set", 2)
    on_change.assert_not_called()
    scheduler.flush()
    on_change.assert_called_once_with({"count": 2})


async def test_coeffects(scheduler: ManualScheduler) -> None:
    store = create_store(
        {"time": None}, coeffects={"now": lambda: 1000}, scheduler=scheduler
    )
    store.register_event_db("stamp", lambda cofx, payload: {"time": cofx["now"]})
    await store.dispatch("stamp")
    assert store.get_state() == {"time": 1000}


async def test_effect_chain(store: Store) -> None:
    """Test effects dispatch follow up events that run after the current one."""
    store.register_event(
        "inc-twice",
        lambda cofx, payload: {
            "dispatch": {"event": "inc"},
            "fx": [("dispatch", {"event": "inc"})],
        },
    )
    await store.dispatch("inc-twice")
    await store.flush()
    assert store.get_state() == {"count": 2}


async def test_dispatch_later(store: Store) -> None:
    store.register_event(
        "inc-later",
        lambda cofx, payload: {"dispatch-later": [{"ms": 10, "event": "inc"}]},
    )
    await store.dispatch("inc-later")
    assert store.get_state() == {"count": 0}
    await store.task_service.block_till_done()
    assert store.get_state() == {"count": 1}


async def test_custom_effect(store: Store) -> None:
    calls: list[Any] = []
    store.register_effect("log", lambda config, deps: calls.append(config))
    store.register_event("save", lambda cofx, payload: {"log": payload})
    await store.dispatch("save", "hello")
    assert calls == ["hello"]


async def test_register_effect_overwrite_warns(
    store: Store, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING):
        store.register_effect("dispatch", lambda config, deps: None)
    assert 'Effect handler for "dispatch" is being overwritten' in caplog.text


async def test_deregister_event_effect(store: Store) -> None:
    store.register_event(
        "remove-inc", lambda cofx, payload: {"deregister-event-handler": "inc"}
    )
    await store.dispatch("remove-inc")
    assert store.get_interceptors("inc") is None
    await store.dispatch("inc")
    assert store.get_state() == {"count": 0}


async def test_effect_error_reported(store: Store) -> None:
    handler = Mock()
    store.register_error_handler(handler)

    def failing(config: Any, deps: Any) -> None:
        raise ValueError("Effect failed")

    store.register_effect("failing", failing)
    store.register_event(
        "x", lambda cofx, payload: {"failing": True, "db": {"count": 10}}
    )
    await store.dispatch("x", "p")
    assert store.get_state() == {"count": 10}
    error, context, config = handler.call_args.args
    assert isinstance(error, ValueError)
    assert isinstance(context, ErrorContext)
    assert context.phase == ErrorPhase.EFFECT
    assert context.payload == "p"
    assert config == ErrorHandlerConfig()


async def test_rethrow_rejects_dispatch(scheduler: ManualScheduler) -> None:
    store = create_store({"count": 0}, rethrow=True, error_handler=Mock(), scheduler=scheduler)

    def handler(cofx: Any, payload: Any) -> Any:
        raise ValueError("handler failed")

    store.register_event_db("bad", handler)
    store.register_event_db("set", lambda cofx, payload: {"count": payload})
    bad = store.dispatch("bad")
    good = store.dispatch("set", 1)
    with pytest.raises(ValueError, match="handler failed"):
        await bad
    await good
    assert store.get_state() == {"count": 1}


async def test_register_error_handler_with_config(store: Store) -> None:
    store.register_error_handler(Mock(), {"rethrow": True})

    def handler(cofx: Any, payload: Any) -> Any:
        raise ValueError("handler failed")

    store.register_event_db("bad", handler)
    with pytest.raises(ValueError):
        await store.dispatch("bad")


async def test_path_interceptor(scheduler: ManualScheduler) -> None:
    store = create_store(
        {"count": 0, "user": {"name": "Alice", "age": 30}}, scheduler=scheduler
    )
    store.register_event_db(
        "birthday",
        lambda cofx, payload: {**cofx["db"], "age": cofx["db"]["age"] + 1},
        [path(["user"])],
    )
    await store.dispatch("birthday")
    assert store.get_state() == {"count": 0, "user": {"name": "Alice", "age": 31}}
    assert [i.id for i in store.get_interceptors("birthday") or []] == [
        "path-user",
        "db-handler",
    ]


async def test_trace_callbacks(scheduler: ManualScheduler) -> None:
    store = create_store(
        {"count": 0}, tracing={"enabled": True, "debounce_time": 0}, scheduler=scheduler
    )
    store.register_event_db("inc", lambda cofx, payload: {"count": cofx["db"]["count"] + 1})
    removed = Mock()
    kept = Mock()
    store.register_trace_callback("removed", removed)
    store.register_trace_callback("kept", kept)
    store.remove_trace_callback("removed")

    await store.dispatch("inc")
    await store.dispatch("inc")
    await asyncio.sleep(0.01)

    removed.assert_not_called()
    traces = [trace for call in kept.call_args_list for trace in call.args[0]]
    assert [trace.state_after for trace in traces] == [{"count": 1}, {"count": 2}]


def test_trace_callback_warns_when_disabled(
    store: Store, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING):
        store.register_trace_callback("test", Mock())
    assert "Tracing is not enabled" in caplog.text


async def test_get_subscription(store: Store) -> None:
    store.register_subscription("double", {"compute": lambda s: s["count"] * 2})
    sub = store.get_subscription("double", [])
    assert store.get_subscription("double", []) is sub
    unsubscribe = store.subscribe("double", [], Mock())
    assert sub.ref_count == 1
    unsubscribe()
    assert sub.ref_count == 0
    assert store.get_subscription("double", []) is not sub


def test_store_defaults() -> None:
    store = create_store()
    assert store.get_state() is None
    assert store.query("missing") is None


def test_store_creation_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.DEBUG, logger="ripplex.store"):
        create_store(coeffects={"now": lambda: 0}, tracing={"enabled": True})
    assert "Created store (tracing=True, rethrow=False, coeffects=['now'])" in caplog.text

"""Unit tests for the listener registry and fire_event."""
from __future__ import annotations

import pytest

from vaultchat.engine.config import fire_event
from vaultchat.engine.listeners import ListenerRegistry


@pytest.mark.asyncio
async def test_sync_and_async_listeners_in_order() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []

    def sync_cb(payload):
        seen.append(f"sync:{payload}")

    async def async_cb(payload):
        seen.append(f"async:{payload}")

    registry.on("message", sync_cb)
    registry.on("message", async_cb)
    await registry.emit("message", "x")
    assert seen == ["sync:x", "async:x"]


@pytest.mark.asyncio
async def test_cancel_removes_only_that_callback() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []
    first = registry.on("partial", lambda p: seen.append("a"))
    registry.on("partial", lambda p: seen.append("b"))

    first.cancel()
    first.cancel()
    assert not first.active
    assert registry.count("partial") == 1
    await registry.emit("partial", "t")
    assert seen == ["b"]


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_others() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []

    def boom(payload):
        raise RuntimeError("listener bug")

    registry.on("message", boom)
    registry.on("message", lambda p: seen.append(p))
    await registry.emit("message", "ok")
    assert seen == ["ok"]


@pytest.mark.asyncio
async def test_listener_may_cancel_itself_during_emit() -> None:
    registry = ListenerRegistry()
    seen: list[str] = []
    holder = {}

    def once(payload):
        seen.append(payload)
        holder["sub"].cancel()

    holder["sub"] = registry.on("message", once)
    await registry.emit("message", "1")
    await registry.emit("message", "2")
    assert seen == ["1"]


@pytest.mark.asyncio
async def test_context_manager_and_clear() -> None:
    registry = ListenerRegistry()
    with registry.on("message", lambda p: None) as sub:
        assert registry.count("message") == 1
    assert not sub.active
    assert registry.count("message") == 0

    other = registry.on("message", lambda p: None)
    registry.clear()
    assert not other.active
    assert registry.count("message") == 0


@pytest.mark.asyncio
async def test_fire_event_none_is_noop() -> None:
    await fire_event(None, "payload")

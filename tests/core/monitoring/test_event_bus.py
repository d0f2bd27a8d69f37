"""
Tests for the EventBus
"""

import asyncio
import logging

import pytest

from keypass_monitor.core.monitoring.events import EventBus, MonitorEvent


class TestEventBus:
    """Subscription and synchronous emission."""

    def test_emits_to_all_callbacks_in_registration_order(self):
        bus = EventBus()
        calls = []
        bus.on("x", lambda p: calls.append(("first", p)))
        bus.on("x", lambda p: calls.append(("second", p)))

        bus.emit("x", 1)

        assert calls == [("first", 1), ("second", 1)]

    def test_same_callback_registered_once(self):
        bus = EventBus()
        calls = []

        def cb(payload):
            calls.append(payload)

        bus.on("x", cb)
        bus.on("x", cb)
        bus.emit("x", "p")

        assert calls == ["p"]
        assert bus.listener_count("x") == 1

    def test_off_removes_callback(self):
        bus = EventBus()
        calls = []

        def cb(payload):
            calls.append(payload)

        bus.on("x", cb)
        bus.off("x", cb)
        bus.emit("x", "p")

        assert calls == []
        assert bus.listener_count("x") == 0

    def test_off_unknown_callback_is_noop(self):
        bus = EventBus()
        bus.off("never-registered", lambda p: None)
        bus.on("x", lambda p: None)
        bus.off("x", lambda p: None)
        assert bus.listener_count("x") == 1

    def test_raising_callback_does_not_stop_others(self, caplog):
        bus = EventBus()
        calls = []

        def broken(payload):
            raise RuntimeError("listener bug")

        bus.on("x", broken)
        bus.on("x", lambda p: calls.append(p))

        with caplog.at_level(logging.ERROR):
            bus.emit("x", "p")

        assert calls == ["p"]
        assert "listener bug" in caplog.text

    def test_events_are_isolated(self):
        bus = EventBus()
        calls = []
        bus.on(MonitorEvent.CONNECTED, calls.append)
        bus.emit(MonitorEvent.DISCONNECTED, "p")
        assert calls == []

    def test_callback_may_unsubscribe_during_emit(self):
        bus = EventBus()
        calls = []

        def once(payload):
            calls.append("once")
            bus.off("x", once)

        bus.on("x", once)
        bus.on("x", lambda p: calls.append("always"))

        bus.emit("x")
        bus.emit("x")

        assert calls == ["once", "always", "always"]

    @pytest.mark.asyncio
    async def test_coroutine_callback_is_scheduled(self):
        bus = EventBus()
        received = asyncio.Event()

        async def cb(payload):
            received.set()

        bus.on("x", cb)
        bus.emit("x", "p")

        await asyncio.wait_for(received.wait(), timeout=1)

    def test_coroutine_callback_without_loop_is_dropped(self, caplog):
        bus = EventBus()

        async def cb(payload):
            pass

        bus.on("x", cb)
        with caplog.at_level(logging.WARNING):
            bus.emit("x", "p")

        assert "no running loop" in caplog.text

"""
Tests for Event Bus module.

Tests:
- Event creation and serialization
- Deduplication (warnings not repeated within window)
- Info and critical events never deduplicated
- Subscriber routing by severity and type
- Failing subscribers isolated
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from gridbot.core import (
    CallbackSubscriber,
    Event,
    EventBus,
    EventSeverity,
    EventType,
    LoggingSubscriber,
)


class TestEvent:
    """Tests for Event dataclass."""

    def test_to_dict(self):
        """Test events serialize to plain values."""
        event = Event(
            event_id="event_1",
            event_type=EventType.ORDER_FILLED,
            severity=EventSeverity.INFO,
            message="buy 1 @ 100",
            payload={"price": "100"},
        )

        data = event.to_dict()

        assert data["event_type"] == "ORDER_FILLED"
        assert data["severity"] == "info"
        assert data["payload"] == {"price": "100"}
        assert isinstance(data["timestamp"], str)

    def test_str(self):
        """Test string form shows severity and type."""
        event = Event(
            event_id="event_1",
            event_type=EventType.STOP_LOSS_TRIGGERED,
            severity=EventSeverity.CRITICAL,
            message="stop hit",
            payload={},
        )

        assert str(event) == "[CRITICAL] STOP_LOSS_TRIGGERED: stop hit"


class TestDeduplication:
    """Tests for event deduplication."""

    @pytest.fixture
    def bus(self):
        return EventBus()

    def test_warning_deduplicated(self, bus):
        """Test the same warning is suppressed within the window."""
        first = bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift")
        second = bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift")

        assert first is not None
        assert second is None
        assert bus.get_stats()["suppressed"] == 1

    def test_different_types_not_deduplicated(self, bus):
        """Test dedup is per event type."""
        bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift")

        assert bus.publish(EventType.REVERSAL_DETECTED, EventSeverity.WARNING, "reversal") is not None

    def test_info_never_deduplicated(self, bus):
        """Test info events always go out."""
        for _ in range(3):
            assert bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, "cycle") is not None

    def test_critical_never_deduplicated(self, bus):
        """Test critical events always go out."""
        bus.publish(EventType.STOP_LOSS_TRIGGERED, EventSeverity.CRITICAL, "stop")

        assert bus.publish(EventType.STOP_LOSS_TRIGGERED, EventSeverity.CRITICAL, "stop") is not None

    def test_force_bypasses_dedup(self, bus):
        """Test force sends a duplicate warning."""
        bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift")

        assert bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift", force=True) is not None

    def test_clear_event_type_allows_resend(self, bus):
        """Test clearing the last-sent time re-enables a type."""
        bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift")
        bus.clear_event_type(EventType.DRIFT_DETECTED)

        assert bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift") is not None


class TestSubscribers:
    """Tests for subscriber routing."""

    @pytest.fixture
    def bus(self):
        return EventBus()

    def test_callback_receives_dict(self, bus):
        """Test callbacks get serialized events."""
        callback = Mock()
        bus.subscribe(CallbackSubscriber(callback))

        bus.publish(EventType.ORDER_FILLED, EventSeverity.INFO, "fill", {"size": "1"})

        callback.assert_called_once()
        data = callback.call_args[0][0]
        assert data["event_type"] == "ORDER_FILLED"
        assert data["payload"] == {"size": "1"}

    def test_event_type_filter(self, bus):
        """Test callbacks only see subscribed types."""
        callback = Mock()
        bus.subscribe(CallbackSubscriber(callback, event_types=[EventType.ORDER_FILLED]))

        bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, "cycle")
        bus.publish(EventType.ORDER_FILLED, EventSeverity.INFO, "fill")

        assert callback.call_count == 1

    def test_severity_filter(self, bus):
        """Test subscribers skip events below their severity."""
        callback = Mock()
        bus.subscribe(CallbackSubscriber(callback, min_severity=EventSeverity.WARNING))

        bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, "cycle")
        bus.publish(EventType.EXCHANGE_ERROR, EventSeverity.WARNING, "error")

        assert callback.call_count == 1

    def test_failing_callback_isolated(self, bus):
        """Test one failing callback does not block the others."""
        failing = Mock(side_effect=RuntimeError("boom"))
        working = Mock()
        bus.subscribe(CallbackSubscriber(failing))
        bus.subscribe(CallbackSubscriber(working))

        bus.publish(EventType.ORDER_FILLED, EventSeverity.INFO, "fill")

        working.assert_called_once()

    def test_logging_subscriber(self, bus, caplog):
        """Test logging subscriber writes warnings."""
        bus.subscribe(LoggingSubscriber())

        with caplog.at_level("WARNING"):
            bus.publish(EventType.DRIFT_DETECTED, EventSeverity.WARNING, "drift found")

        assert "drift found" in caplog.text

    def test_unsubscribe(self, bus):
        """Test unsubscribed callbacks stop receiving events."""
        callback = Mock()
        subscriber = bus.subscribe(CallbackSubscriber(callback))

        assert bus.unsubscribe(subscriber) is True
        assert bus.unsubscribe(subscriber) is False

        bus.publish(EventType.ORDER_FILLED, EventSeverity.INFO, "fill")
        callback.assert_not_called()


class TestHistory:
    """Tests for event history queries."""

    def test_history_bounded(self):
        """Test history keeps only the newest events."""
        bus = EventBus(max_history=3)
        for i in range(5):
            bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, f"cycle {i}")

        recent = bus.get_recent()
        assert [e.message for e in recent] == ["cycle 2", "cycle 3", "cycle 4"]

    def test_get_recent_filters(self):
        """Test filtering by type, severity, time and limit."""
        bus = EventBus()
        bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, "cycle")
        bus.publish(EventType.EXCHANGE_ERROR, EventSeverity.WARNING, "error")
        bus.publish(EventType.STOP_LOSS_TRIGGERED, EventSeverity.CRITICAL, "stop")

        assert len(bus.get_recent(event_type=EventType.EXCHANGE_ERROR)) == 1
        assert len(bus.get_recent(min_severity=EventSeverity.WARNING)) == 2
        assert len(bus.get_recent(limit=1)) == 1

        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert bus.get_recent(since=future) == []

    def test_stats(self):
        """Test stats count events by severity and type."""
        bus = EventBus()
        bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, "cycle")
        bus.publish(EventType.CYCLE_COMPLETED, EventSeverity.INFO, "cycle")
        bus.publish(EventType.EXCHANGE_ERROR, EventSeverity.WARNING, "error")

        stats = bus.get_stats()
        assert stats["total_events"] == 3
        assert stats["by_severity"]["info"] == 2
        assert stats["by_type"]["CYCLE_COMPLETED"] == 2

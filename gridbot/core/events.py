"""
Event Bus for engine observers.

Provides:
- Event types and severity levels
- Publish/subscribe dispatch to registered subscribers
- Subscribers for logging and callbacks
- Event history and deduplication

The engine never depends on a transport. Dashboards, notifiers and
tests subscribe here and receive plain dict payloads.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventSeverity(Enum):
    """Event severity levels."""

    INFO = "info"  # Routine lifecycle event
    WARNING = "warning"  # Needs attention
    CRITICAL = "critical"  # Operator should intervene


class EventType(Enum):
    """Types of engine events."""

    # Session lifecycle
    SESSION_STARTED = auto()
    SESSION_STOPPED = auto()
    CYCLE_COMPLETED = auto()

    # Trading
    ORDER_FILLED = auto()
    GRID_REGENERATED = auto()
    DRIFT_DETECTED = auto()

    # Risk
    STOP_LOSS_TRIGGERED = auto()
    REVERSAL_DETECTED = auto()

    # Failures
    EXCHANGE_ERROR = auto()
    STATE_INCONSISTENCY = auto()


SEVERITY_ORDER = [
    EventSeverity.INFO,
    EventSeverity.WARNING,
    EventSeverity.CRITICAL,
]


@dataclass
class Event:
    """A single published event."""

    event_id: str
    event_type: EventType
    severity: EventSeverity
    message: str
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.name,
            "severity": self.severity.value,
            "message": self.message,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"[{self.severity.value.upper()}] {self.event_type.name}: {self.message}"


class EventSubscriber(ABC):
    """Base class for event subscribers."""

    @abstractmethod
    def handle(self, event: Event) -> bool:
        """
        Handle an event.

        Args:
            event: Event to handle

        Returns:
            True if handled successfully
        """

    @property
    @abstractmethod
    def min_severity(self) -> EventSeverity:
        """Minimum severity this subscriber receives."""

    def accepts(self, event: Event) -> bool:
        """Check severity filter."""
        return SEVERITY_ORDER.index(event.severity) >= SEVERITY_ORDER.index(self.min_severity)


class LoggingSubscriber(EventSubscriber):
    """Subscriber that logs events."""

    def __init__(self, min_severity: EventSeverity = EventSeverity.WARNING):
        self._min_severity = min_severity

    @property
    def min_severity(self) -> EventSeverity:
        return self._min_severity

    def handle(self, event: Event) -> bool:
        log_method = {
            EventSeverity.INFO: logger.info,
            EventSeverity.WARNING: logger.warning,
            EventSeverity.CRITICAL: logger.error,
        }[event.severity]

        log_method(f"[EVENT] {event.event_type.name}: {event.message}")
        return True


class CallbackSubscriber(EventSubscriber):
    """Subscriber that forwards event dicts to a callback."""

    def __init__(
        self,
        callback: Callable[[Dict[str, Any]], None],
        event_types: Optional[Iterable[EventType]] = None,
        min_severity: EventSeverity = EventSeverity.INFO,
    ):
        self._callback = callback
        self._event_types: Optional[Set[EventType]] = (
            set(event_types) if event_types is not None else None
        )
        self._min_severity = min_severity

    @property
    def min_severity(self) -> EventSeverity:
        return self._min_severity

    def accepts(self, event: Event) -> bool:
        if self._event_types is not None and event.event_type not in self._event_types:
            return False
        return super().accepts(event)

    def handle(self, event: Event) -> bool:
        try:
            self._callback(event.to_dict())
            return True
        except Exception as e:
            logger.error(f"Event callback failed: {e}")
            return False


class EventBus:
    """
    In-process publish/subscribe channel.

    Handles:
    - Dispatch to every matching subscriber
    - Deduplication of repeated warnings
    - Bounded event history

    Usage:
        bus = EventBus()
        bus.subscribe(LoggingSubscriber())
        bus.subscribe(CallbackSubscriber(on_fill, [EventType.ORDER_FILLED]))

        bus.publish(
            EventType.ORDER_FILLED,
            EventSeverity.INFO,
            "buy 0.1 @ 100",
            {"price": "100", "size": "0.1"},
        )
    """

    # Deduplication windows by severity
    DEDUP_WINDOWS = {
        EventSeverity.INFO: timedelta(seconds=0),  # Always send
        EventSeverity.WARNING: timedelta(seconds=60),
        EventSeverity.CRITICAL: timedelta(seconds=0),  # Always send
    }

    def __init__(self, max_history: int = 1000):
        self._subscribers: List[EventSubscriber] = []
        self._history: List[Event] = []
        self._last_event_times: Dict[EventType, datetime] = {}
        self._event_counter = 0
        self._suppressed = 0
        self._max_history = max_history

    def subscribe(self, subscriber: EventSubscriber) -> EventSubscriber:
        """Register a subscriber."""
        self._subscribers.append(subscriber)
        logger.debug(f"Added event subscriber: {subscriber.__class__.__name__}")
        return subscriber

    def unsubscribe(self, subscriber: EventSubscriber) -> bool:
        """Remove a subscriber. Returns False if it was not registered."""
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
            return True
        return False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        force: bool = False,
    ) -> Optional[Event]:
        """
        Publish an event to all matching subscribers.

        Args:
            event_type: Type of event
            severity: Severity level
            message: Human-readable message
            payload: JSON-friendly details
            force: Bypass deduplication

        Returns:
            Event if published, None if deduplicated
        """
        if not force and not self._should_send(event_type, severity):
            self._suppressed += 1
            logger.debug(f"Event deduplicated: {event_type.name}")
            return None

        self._event_counter += 1
        now = _utcnow()
        event = Event(
            event_id=f"event_{self._event_counter}_{int(now.timestamp())}",
            event_type=event_type,
            severity=severity,
            message=message,
            payload=payload or {},
            timestamp=now,
        )

        self._last_event_times[event_type] = now
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        self._dispatch(event)
        return event

    def _should_send(self, event_type: EventType, severity: EventSeverity) -> bool:
        """Check if event should be sent (deduplication)."""
        window = self.DEDUP_WINDOWS[severity]
        if not window:
            return True

        last_time = self._last_event_times.get(event_type)
        if last_time is None:
            return True
        return _utcnow() - last_time > window

    def _dispatch(self, event: Event) -> None:
        """Dispatch event to all accepting subscribers."""
        for subscriber in list(self._subscribers):
            if not subscriber.accepts(event):
                continue
            try:
                subscriber.handle(event)
            except Exception as e:
                logger.error(f"Subscriber {subscriber.__class__.__name__} failed: {e}")

    def get_recent(
        self,
        since: Optional[datetime] = None,
        event_type: Optional[EventType] = None,
        min_severity: Optional[EventSeverity] = None,
        limit: Optional[int] = None,
    ) -> List[Event]:
        """Get recent events with optional filters, oldest first."""
        events = self._history
        if since:
            events = [e for e in events if e.timestamp >= since]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if min_severity:
            min_idx = SEVERITY_ORDER.index(min_severity)
            events = [e for e in events if SEVERITY_ORDER.index(e.severity) >= min_idx]
        if limit is not None:
            events = events[-limit:]
        return list(events)

    def clear_event_type(self, event_type: EventType) -> None:
        """Clear last event time for a type (allows immediate resend)."""
        self._last_event_times.pop(event_type, None)

    def get_stats(self) -> Dict[str, Any]:
        """Get event statistics."""
        severity_counts = {s.value: 0 for s in EventSeverity}
        type_counts: Dict[str, int] = {}
        for event in self._history:
            severity_counts[event.severity.value] += 1
            type_counts[event.event_type.name] = type_counts.get(event.event_type.name, 0) + 1

        return {
            "total_events": len(self._history),
            "suppressed": self._suppressed,
            "by_severity": severity_counts,
            "by_type": type_counts,
            "subscriber_count": len(self._subscribers),
        }

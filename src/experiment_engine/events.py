"""
Typed event channel for lifecycle and instrumentation events.

Consumers (dashboards, alerting) attach with subscribe() and detach through the
returned Subscription handle. Each EventChannel is an explicit instance, so
tests and services never share listener state.
"""

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .schema import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    EXPERIMENT_CREATED = "experimentCreated"
    EXPERIMENT_STARTED = "experimentStarted"
    USER_ASSIGNED = "userAssigned"
    CONVERSION_TRACKED = "conversionTracked"
    GUARDRAIL_ALERT = "guardrailAlert"
    EXPERIMENT_PAUSED = "experimentPaused"
    EXPERIMENT_RESUMED = "experimentResumed"
    EXPERIMENT_STOPPED = "experimentStopped"
    EXPERIMENT_CANCELLED = "experimentCancelled"
    BIAS_DETECTED = "biasDetected"


@dataclass(frozen=True)
class Event:
    event_type: EventType
    experiment_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "experiment_id": self.experiment_id,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[Event], None]


class Subscription:
    """Handle returned by EventChannel.subscribe."""

    def __init__(self, channel: "EventChannel", token: int, event_type: Optional[EventType]):
        self._channel = channel
        self.token = token
        self.event_type = event_type

    @property
    def active(self) -> bool:
        return self._channel.is_subscribed(self)

    def unsubscribe(self) -> bool:
        return self._channel.unsubscribe(self)


class EventChannel:
    """
    Synchronous publish/subscribe channel.

    Handlers run on the publisher's thread. A failing handler is logged and
    skipped; it never propagates into the publisher (assignment and tracking
    are hot paths).
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._handlers: Dict[int, Tuple[Optional[EventType], EventHandler]] = {}
        self._tokens = itertools.count(1)
        self._handler_errors = 0

    def subscribe(self, handler: EventHandler, event_type: Optional[EventType] = None) -> Subscription:
        """
        Attach a handler.

        Args:
            handler: Callable receiving each Event
            event_type: Only deliver this type (None = all events)

        Returns:
            Subscription handle used to detach the handler
        """
        with self._lock:
            token = next(self._tokens)
            self._handlers[token] = (event_type, handler)
        name = getattr(handler, "__name__", repr(handler))
        logger.debug(f"Handler '{name}' subscribed to {event_type.value if event_type else 'all events'}")
        return Subscription(self, token, event_type)

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            return self._handlers.pop(subscription.token, None) is not None

    def is_subscribed(self, subscription: Subscription) -> bool:
        with self._lock:
            return subscription.token in self._handlers

    def publish(self, event_type: EventType, experiment_id: str, **payload: Any) -> Event:
        event = Event(event_type=event_type, experiment_id=experiment_id, payload=payload)
        with self._lock:
            handlers = [h for t, h in self._handlers.values() if t is None or t == event_type]

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                with self._lock:
                    self._handler_errors += 1
                logger.exception(f"Event handler failed for {event_type.value} on {experiment_id}")
        return event

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    @property
    def handler_errors(self) -> int:
        with self._lock:
            return self._handler_errors


class EventRecorder:
    """Handler that keeps every received event in memory. Useful for audits and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]

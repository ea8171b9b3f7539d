"""In-process publish/subscribe hub for lifecycle and completion events."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from .errors import SubscriberFailure

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    CLIENT_CONNECTED = "client_connected"
    CLIENT_DISCONNECTED = "client_disconnected"
    CLIENT_STATUS_CHANGED = "client_status_changed"
    CLIENT_METRICS_UPDATED = "client_metrics_updated"
    FILE_CHANGED = "file_changed"
    TASK_COMPLETED = "task_completed"


@dataclass(frozen=True, slots=True)
class BusEvent:
    """Immutable event delivered to bus subscribers."""

    type: EventType
    client_id: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Return the stable outbound schema used by notification consumers."""

        return {
            "type": self.type.value,
            "clientId": self.client_id,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }


Subscriber = Callable[[BusEvent], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(
        self,
        bus: "EventBus",
        callback: Subscriber,
        event_types: frozenset[EventType] | None,
    ) -> None:
        self._bus = bus
        self.callback = callback
        self.event_types = event_types
        self.active = True

    def accepts(self, event: BusEvent) -> bool:
        return self.event_types is None or event.type in self.event_types

    def unsubscribe(self) -> None:
        self._bus._remove(self)

    @property
    def name(self) -> str:
        return getattr(self.callback, "__qualname__", None) or repr(self.callback)


class EventBus:
    """Synchronous fan-out to subscribers in registration order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []
        self._dispatch = threading.local()

    def subscribe(
        self,
        callback: Subscriber,
        event_types: Iterable[EventType] | None = None,
    ) -> Subscription:
        types = frozenset(event_types) if event_types is not None else None
        subscription = Subscription(self, callback, types)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: BusEvent) -> list[SubscriberFailure]:
        """Deliver ``event`` to every current subscriber.

        The subscriber list is captured before delivery, so callbacks that
        subscribe or unsubscribe while handling the event affect only later
        publishes. A subscriber that raises is logged and skipped; delivery
        continues with the remaining subscribers.

        Events published by a subscriber while this thread is already
        dispatching are queued and delivered after the current fan-out, so
        every subscriber sees them in the order they were generated. Their
        failures are reported by the outermost ``publish``.
        """

        pending = getattr(self._dispatch, "pending", None)
        if pending is not None:
            pending.append(event)
            return []

        self._dispatch.pending = pending = deque([event])
        failures: list[SubscriberFailure] = []
        try:
            while pending:
                failures.extend(self._deliver(pending.popleft()))
        finally:
            self._dispatch.pending = None
        return failures

    def _deliver(self, event: BusEvent) -> list[SubscriberFailure]:
        with self._lock:
            targets = list(self._subscriptions)

        failures: list[SubscriberFailure] = []
        for subscription in targets:
            if not subscription.accepts(event):
                continue
            try:
                subscription.callback(event)
            except Exception as exc:
                failure = SubscriberFailure(subscription.name, event.type.value, exc)
                failures.append(failure)
                logger.exception(
                    "Event subscriber failed",
                    extra={
                        "subscriber": subscription.name,
                        "event_type": event.type.value,
                        "client_id": event.client_id,
                    },
                )
        return failures

    def emit(
        self,
        event_type: EventType,
        client_id: str | None = None,
        **payload: Any,
    ) -> BusEvent:
        """Build and publish an event in one call."""

        event = BusEvent(type=event_type, client_id=client_id, payload=payload)
        self.publish(event)
        return event


__all__ = ["BusEvent", "EventBus", "EventType", "Subscriber", "Subscription"]

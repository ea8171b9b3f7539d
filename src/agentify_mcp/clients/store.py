"""Canonical store for connected client entities."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

from ..errors import InvalidEntity
from ..events import EventBus, EventType
from .models import ClientEntity, ClientKind, ClientMetrics, ClientStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONTEXT_FIELDS = {"working_directory", "active_files", "current_task", "last_completed_task"}


@dataclass(slots=True)
class _Slot:
    entity: ClientEntity
    lock: threading.RLock = field(default_factory=threading.RLock)


class ClientStore:
    """Owns every live :class:`ClientEntity`.

    A map lock guards membership and each entity carries its own re-entrant
    lock, so mutations of one client are serialized while distinct clients
    proceed in parallel. Callers only ever receive snapshots.
    """

    def __init__(
        self,
        bus: EventBus | None = None,
        *,
        history_limit: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._bus = bus or EventBus()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._slots: dict[str, _Slot] = {}
        self._history: deque[ClientEntity] = deque(maxlen=history_limit)

    @property
    def bus(self) -> EventBus:
        return self._bus

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _validate(entity: ClientEntity) -> None:
        if not entity.id or not str(entity.id).strip():
            raise InvalidEntity("Client id must not be empty")
        if not entity.name or not str(entity.name).strip():
            raise InvalidEntity(f"Client {entity.id} must have a display name")
        if not entity.kind:
            raise InvalidEntity(f"Client {entity.id} must declare a client kind")
        if not isinstance(entity.kind, ClientKind):
            try:
                entity.kind = ClientKind(entity.kind)
            except ValueError as exc:
                raise InvalidEntity(f"Unknown client kind '{entity.kind}'") from exc

    def register(self, entity: ClientEntity) -> ClientEntity:
        """Insert or replace ``entity`` and publish ``CLIENT_CONNECTED``."""

        candidate = entity.snapshot()
        self._validate(candidate)

        now = self._clock()
        candidate.status = ClientStatus.CONNECTED
        candidate.connected_at = now
        candidate.last_activity_at = now
        if candidate.metrics is None:
            candidate.metrics = ClientMetrics()

        slot = _Slot(candidate)
        with slot.lock:
            with self._lock:
                replaced = candidate.id in self._slots
                self._slots[candidate.id] = slot
            snapshot = candidate.snapshot()
            self._bus.emit(
                EventType.CLIENT_CONNECTED,
                candidate.id,
                client=snapshot.to_dict(),
                replaced=replaced,
            )

        logger.info(
            "Client registered",
            extra={"client_id": candidate.id, "kind": candidate.kind.value, "replaced": replaced},
        )
        return snapshot

    def _slot(self, client_id: str) -> _Slot | None:
        with self._lock:
            return self._slots.get(client_id)

    def get(self, client_id: str) -> ClientEntity | None:
        slot = self._slot(client_id)
        if slot is None:
            return None
        with slot.lock:
            return slot.entity.snapshot()

    def mutate(self, client_id: str, fn: Callable[[ClientEntity], T]) -> T | None:
        """Run ``fn`` against the live entity while holding its lock.

        Returns ``None`` without calling ``fn`` when the id is unknown.
        """

        slot = self._slot(client_id)
        if slot is None:
            logger.warning("Client not found", extra={"client_id": client_id})
            return None
        with slot.lock:
            # The slot may have been replaced or removed while we waited.
            if self._slot(client_id) is not slot:
                logger.warning("Client not found", extra={"client_id": client_id})
                return None
            return fn(slot.entity)

    def _touch_entity(self, entity: ClientEntity) -> None:
        now = self._clock()
        if now > entity.last_activity_at:
            entity.last_activity_at = now

    def touch(self, client_id: str) -> bool:
        return self.mutate(client_id, lambda entity: self._touch_entity(entity) or True) is True

    def unregister(self, client_id: str) -> ClientEntity | None:
        """Mark ``client_id`` disconnected, archive it, and drop it from the live map."""

        slot = self._slot(client_id)
        if slot is None:
            logger.warning("Cannot unregister unknown client", extra={"client_id": client_id})
            return None
        with slot.lock:
            with self._lock:
                if self._slots.get(client_id) is not slot:
                    return None
                del self._slots[client_id]
            slot.entity.status = ClientStatus.DISCONNECTED
            snapshot = slot.entity.snapshot()
            with self._lock:
                self._history.append(snapshot)
            self._bus.emit(EventType.CLIENT_DISCONNECTED, client_id, client=snapshot.to_dict())

        logger.info("Client unregistered", extra={"client_id": client_id})
        return snapshot

    def _entities(self) -> list[_Slot]:
        with self._lock:
            return list(self._slots.values())

    def list_all(self) -> list[ClientEntity]:
        result = []
        for slot in self._entities():
            with slot.lock:
                result.append(slot.entity.snapshot())
        return result

    def list_active(self) -> list[ClientEntity]:
        return [entity for entity in self.list_all() if entity.status is not ClientStatus.DISCONNECTED]

    def list_by_kind(self, kind: ClientKind) -> list[ClientEntity]:
        return [entity for entity in self.list_all() if entity.kind is kind]

    def active_ids(self) -> list[str]:
        return [entity.id for entity in self.list_active()]

    def is_active(self, client_id: str) -> bool:
        entity = self.get(client_id)
        return entity is not None and entity.status is not ClientStatus.DISCONNECTED

    def uptime(self, client_id: str) -> float:
        entity = self.get(client_id)
        if entity is None:
            return 0.0
        return entity.uptime_seconds(self._clock())

    def sweep_inactive(self, timeout_ms: int) -> list[ClientEntity]:
        """Return clients whose last activity is strictly older than ``timeout_ms``."""

        cutoff = self._clock() - timedelta(milliseconds=timeout_ms)
        return [entity for entity in self.list_all() if entity.last_activity_at < cutoff]

    def update_context(self, client_id: str, **changes: Any) -> ClientEntity | None:
        unknown = set(changes) - _CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown context fields: {', '.join(sorted(unknown))}")

        def apply(entity: ClientEntity) -> ClientEntity:
            for key, value in changes.items():
                setattr(entity.context, key, value)
            self._touch_entity(entity)
            return entity.snapshot()

        return self.mutate(client_id, apply)

    def apply_metrics(self, client_id: str, **gauges: float | None) -> ClientEntity | None:
        """Merge gauge values into the client's metrics and publish the update."""

        def apply(entity: ClientEntity) -> ClientEntity:
            metrics = entity.metrics or ClientMetrics()
            for key in ("cpu_usage", "memory_usage"):
                if key in gauges:
                    setattr(metrics, key, gauges[key])
            entity.metrics = metrics
            snapshot = entity.snapshot()
            self._bus.emit(
                EventType.CLIENT_METRICS_UPDATED,
                client_id,
                metrics={
                    "request_count": metrics.request_count,
                    "error_count": metrics.error_count,
                    "cpu_usage": metrics.cpu_usage,
                    "memory_usage": metrics.memory_usage,
                    "uptime_seconds": round(snapshot.uptime_seconds(self._clock()), 3),
                },
            )
            return snapshot

        return self.mutate(client_id, apply)

    def _increment(self, client_id: str, counter: str) -> int | None:
        def apply(entity: ClientEntity) -> int:
            metrics = entity.metrics or ClientMetrics()
            value = getattr(metrics, counter) + 1
            setattr(metrics, counter, value)
            entity.metrics = metrics
            self._touch_entity(entity)
            return value

        return self.mutate(client_id, apply)

    def increment_request(self, client_id: str) -> int | None:
        return self._increment(client_id, "request_count")

    def increment_error(self, client_id: str) -> int | None:
        return self._increment(client_id, "error_count")

    def history(self) -> list[ClientEntity]:
        with self._lock:
            return list(self._history)

    def stats(self) -> dict[str, Any]:
        clients = self.list_all()
        with self._lock:
            history_size = len(self._history)
        by_kind: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for entity in clients:
            kind = entity.kind.value if entity.kind else "unknown"
            by_kind[kind] = by_kind.get(kind, 0) + 1
            by_status[entity.status.value] = by_status.get(entity.status.value, 0) + 1
        return {
            "total": len(clients),
            "active": sum(1 for entity in clients if entity.status is not ClientStatus.DISCONNECTED),
            "by_kind": by_kind,
            "by_status": by_status,
            "history": history_size,
        }


__all__ = ["ClientStore"]

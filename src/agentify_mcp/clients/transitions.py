"""Status state machine for client entities."""

from __future__ import annotations

import logging

from ..errors import InvalidTransition
from ..events import EventType
from .models import ClientEntity, ClientStatus
from .store import ClientStore

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ClientStatus, frozenset[ClientStatus]] = {
    ClientStatus.CONNECTED: frozenset({ClientStatus.IDLE, ClientStatus.RUNNING, ClientStatus.DISCONNECTED}),
    ClientStatus.IDLE: frozenset({ClientStatus.RUNNING, ClientStatus.PAUSED, ClientStatus.DISCONNECTED}),
    ClientStatus.RUNNING: frozenset(
        {ClientStatus.IDLE, ClientStatus.COMPLETED, ClientStatus.ERROR, ClientStatus.PAUSED}
    ),
    ClientStatus.PAUSED: frozenset({ClientStatus.RUNNING, ClientStatus.IDLE, ClientStatus.DISCONNECTED}),
    ClientStatus.ERROR: frozenset({ClientStatus.IDLE, ClientStatus.RUNNING, ClientStatus.DISCONNECTED}),
    ClientStatus.COMPLETED: frozenset({ClientStatus.IDLE, ClientStatus.RUNNING, ClientStatus.DISCONNECTED}),
    ClientStatus.DISCONNECTED: frozenset(),
}


def can_transition(source: ClientStatus, target: ClientStatus) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


def require_transition(source: ClientStatus, target: ClientStatus) -> None:
    if not can_transition(source, target):
        raise InvalidTransition(f"Cannot move from {source.value} to {target.value}")


class StatusStateMachine:
    """Validates and applies status transitions through the store."""

    def __init__(self, store: ClientStore) -> None:
        self._store = store

    def apply_transition(self, client_id: str, target: ClientStatus | str) -> bool:
        """Move ``client_id`` to ``target`` if the transition table allows it.

        Rejected transitions and unknown ids are logged and leave the entity
        untouched; malformed client messages never raise here.
        """

        try:
            target_status = ClientStatus(target)
        except ValueError:
            logger.warning(
                "Rejected unknown status",
                extra={"client_id": client_id, "target": str(target)},
            )
            return False

        def apply(entity: ClientEntity) -> bool:
            source = entity.status
            try:
                require_transition(source, target_status)
            except InvalidTransition as exc:
                logger.warning(
                    "Rejected status transition",
                    extra={"client_id": client_id, "error": str(exc)},
                )
                return False
            entity.status = target_status
            now = self._store.now()
            if now > entity.last_activity_at:
                entity.last_activity_at = now
            # Published under the entity lock so per-client ordering holds.
            self._store.bus.emit(
                EventType.CLIENT_STATUS_CHANGED,
                client_id,
                **{"from": source.value, "to": target_status.value},
            )
            logger.debug(
                "Client status changed",
                extra={"client_id": client_id, "from": source.value, "to": target_status.value},
            )
            return True

        return self._store.mutate(client_id, apply) is True


__all__ = ["StatusStateMachine", "TRANSITIONS", "can_transition", "require_transition"]

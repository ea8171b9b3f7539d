"""Client entity store and status state machine."""

from .models import (
    CLIENT_CAPABILITIES,
    ClientCapabilities,
    ClientContext,
    ClientEntity,
    ClientKind,
    ClientMetrics,
    ClientStatus,
    CompletedTaskRecord,
    capabilities_for,
)
from .store import ClientStore
from .transitions import TRANSITIONS, StatusStateMachine, can_transition, require_transition

__all__ = [
    "CLIENT_CAPABILITIES",
    "ClientCapabilities",
    "ClientContext",
    "ClientEntity",
    "ClientKind",
    "ClientMetrics",
    "ClientStatus",
    "ClientStore",
    "CompletedTaskRecord",
    "StatusStateMachine",
    "TRANSITIONS",
    "can_transition",
    "capabilities_for",
    "require_transition",
]

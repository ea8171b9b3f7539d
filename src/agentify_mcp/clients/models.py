"""Client entity models."""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ClientKind(str, Enum):
    CODING_ASSISTANT = "coding_assistant"
    GENERAL_CLI_AGENT = "general_cli_agent"
    GENERIC_AGENT = "generic_agent"
    CUSTOM = "custom"


class ClientStatus(str, Enum):
    CONNECTED = "connected"
    IDLE = "idle"
    RUNNING = "running"
    WAITING_INPUT = "waiting_input"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class ClientCapabilities:
    """Defaults applied to a client kind. Never gates detection."""

    file_watching: bool
    default_idle_timeout_ms: int
    description: str


CLIENT_CAPABILITIES: dict[ClientKind, ClientCapabilities] = {
    ClientKind.CODING_ASSISTANT: ClientCapabilities(
        file_watching=True,
        default_idle_timeout_ms=60_000,
        description="IDE or terminal coding assistant that edits project files",
    ),
    ClientKind.GENERAL_CLI_AGENT: ClientCapabilities(
        file_watching=True,
        default_idle_timeout_ms=45_000,
        description="General purpose command-line agent",
    ),
    ClientKind.GENERIC_AGENT: ClientCapabilities(
        file_watching=False,
        default_idle_timeout_ms=30_000,
        description="Agent without file-system access",
    ),
    ClientKind.CUSTOM: ClientCapabilities(
        file_watching=False,
        default_idle_timeout_ms=30_000,
        description="Custom integration",
    ),
}


def capabilities_for(kind: ClientKind) -> ClientCapabilities:
    return CLIENT_CAPABILITIES[kind]


@dataclass(slots=True)
class CompletedTaskRecord:
    description: str
    outcome: str
    completed_at: datetime
    trigger: str = "manual"
    details: str | None = None


@dataclass(slots=True)
class ClientContext:
    working_directory: str | None = None
    active_files: list[str] = field(default_factory=list)
    current_task: str | None = None
    last_completed_task: CompletedTaskRecord | None = None


@dataclass(slots=True)
class ClientMetrics:
    request_count: int = 0
    error_count: int = 0
    cpu_usage: float | None = None
    memory_usage: float | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ClientEntity:
    """Identity and live state of one connected agent session."""

    id: str
    name: str
    kind: ClientKind | None
    status: ClientStatus = ClientStatus.CONNECTED
    connected_at: datetime = field(default_factory=_utcnow)
    last_activity_at: datetime = field(default_factory=_utcnow)
    context: ClientContext = field(default_factory=ClientContext)
    metrics: ClientMetrics | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def uptime_seconds(self, now: datetime | None = None) -> float:
        return ((now or _utcnow()) - self.connected_at).total_seconds()

    def snapshot(self) -> "ClientEntity":
        """Return a deep copy that callers may read without holding a lock."""

        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["kind"] = self.kind.value if self.kind else None
        payload["status"] = self.status.value
        payload["connected_at"] = self.connected_at.isoformat()
        payload["last_activity_at"] = self.last_activity_at.isoformat()
        payload["uptime_seconds"] = round(self.uptime_seconds(), 3)
        last_task = payload["context"].get("last_completed_task")
        if last_task:
            last_task["completed_at"] = self.context.last_completed_task.completed_at.isoformat()
        return payload


__all__ = [
    "CLIENT_CAPABILITIES",
    "ClientCapabilities",
    "ClientContext",
    "ClientEntity",
    "ClientKind",
    "ClientMetrics",
    "ClientStatus",
    "CompletedTaskRecord",
    "capabilities_for",
]

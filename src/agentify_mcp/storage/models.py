"""Data models for archived events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class ArchivedEvent:
    """Represents a stored event in Chroma."""

    id: str
    client_id: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


@dataclass(slots=True)
class CompletionRecord:
    client_id: str
    trigger: str
    completed_at: datetime
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "trigger": self.trigger,
            "details": self.details,
            "completed_at": self.completed_at.isoformat(),
        }


__all__ = ["ArchivedEvent", "CompletionRecord"]

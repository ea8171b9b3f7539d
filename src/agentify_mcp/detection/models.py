"""Models for task-completion detection."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..watcher import DEFAULT_IGNORE_PATTERNS

DEFAULT_COMPLETION_KEYWORDS: tuple[str, ...] = (
    "completed",
    "finished",
    "done",
    "success",
    "build successful",
)

DEFAULT_COMPLETION_FILE_PATTERNS: tuple[str, ...] = (
    r"\.log$",
    r"(^|/)package\.json$",
    r"(^|/)pyproject\.toml$",
    r"(^|/)README\.md$",
    r"\.test\.(js|ts)$",
    r"(^|/)test_[^/]*\.py$",
)


class CompletionTrigger(str, Enum):
    IDLE_TIMEOUT = "idle_timeout"
    FILE_ANALYSIS = "file_analysis"
    MANUAL = "manual"
    PROCESS_COMPLETION = "process_completion"


class SessionPhase(str, Enum):
    ARMED = "armed"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    STOPPED = "stopped"


class TrackingConfig(BaseModel):
    """Per-session detection settings."""

    idle_timeout_ms: int = Field(
        default=30_000,
        description="Inactivity window after which the task is presumed finished.",
    )
    completion_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLETION_KEYWORDS),
        description="Case-insensitive substrings that mark a file as reporting completion.",
    )
    completion_file_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLETION_FILE_PATTERNS),
        description="Regular expressions selecting files whose content is inspected.",
    )
    monitor_file_changes: bool = Field(
        default=False,
        description="Subscribe to file-system changes for this session.",
    )
    watch_paths: list[str] = Field(default_factory=lambda: ["."])
    ignore_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))

    @field_validator("idle_timeout_ms")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("idle_timeout_ms must be > 0")
        return value

    @field_validator("completion_keywords")
    @classmethod
    def _normalize_keywords(cls, value: list[str]) -> list[str]:
        keywords = [keyword.strip().lower() for keyword in value if keyword and keyword.strip()]
        return list(dict.fromkeys(keywords))

    @field_validator("completion_file_patterns")
    @classmethod
    def _validate_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"Invalid completion file pattern '{pattern}': {exc}") from exc
        return value

    @property
    def idle_timeout_seconds(self) -> float:
        return self.idle_timeout_ms / 1000


@dataclass(frozen=True, slots=True)
class CompletionEvent:
    """One detected completion episode."""

    client_id: str
    trigger: CompletionTrigger
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "trigger": self.trigger.value,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
        }


__all__ = [
    "CompletionEvent",
    "CompletionTrigger",
    "DEFAULT_COMPLETION_FILE_PATTERNS",
    "DEFAULT_COMPLETION_KEYWORDS",
    "SessionPhase",
    "TrackingConfig",
]

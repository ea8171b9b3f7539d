"""Task-completion detection engine."""

from .detector import TaskCompletionDetector, TrackingSession
from .models import (
    DEFAULT_COMPLETION_FILE_PATTERNS,
    DEFAULT_COMPLETION_KEYWORDS,
    CompletionEvent,
    CompletionTrigger,
    SessionPhase,
    TrackingConfig,
)

__all__ = [
    "CompletionEvent",
    "CompletionTrigger",
    "DEFAULT_COMPLETION_FILE_PATTERNS",
    "DEFAULT_COMPLETION_KEYWORDS",
    "SessionPhase",
    "TaskCompletionDetector",
    "TrackingConfig",
    "TrackingSession",
]

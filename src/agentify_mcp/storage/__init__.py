"""Storage abstractions for Agentify MCP."""

from .archive import ArchiveUnavailableError, EventArchive
from .models import ArchivedEvent, CompletionRecord

__all__ = [
    "ArchiveUnavailableError",
    "ArchivedEvent",
    "CompletionRecord",
    "EventArchive",
]

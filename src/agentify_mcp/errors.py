"""Error taxonomy shared by the registry, detector, and event bus."""

from __future__ import annotations


class AgentifyError(RuntimeError):
    """Base class for Agentify errors."""


class InvalidEntity(AgentifyError):
    """Raised when a client registration is malformed."""


class NotFound(AgentifyError):
    """An operation referenced an unknown client id."""


class InvalidTransition(AgentifyError):
    """A status change is not allowed from the client's current status."""


class WatcherFailure(AgentifyError):
    """Raised when the file-system watcher cannot be started or used."""


class SamplingFailure(AgentifyError):
    """A metrics sampling tick failed."""


class SubscriberFailure(AgentifyError):
    """An event bus subscriber raised while handling an event."""

    def __init__(self, subscriber: str, event_type: str, error: BaseException) -> None:
        super().__init__(f"Subscriber {subscriber} failed on {event_type}: {error}")
        self.subscriber = subscriber
        self.event_type = event_type
        self.error = error


__all__ = [
    "AgentifyError",
    "InvalidEntity",
    "InvalidTransition",
    "NotFound",
    "SamplingFailure",
    "SubscriberFailure",
    "WatcherFailure",
]

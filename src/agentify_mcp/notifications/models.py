"""Notification rule and channel models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ..clients import ClientKind
from ..events import EventType

ChannelName = Literal["slack", "discord", "webhook", "email"]


class NotificationCondition(BaseModel):
    """A single predicate evaluated against an event payload."""

    type: Literal["status_change", "error", "performance", "task_completed", "custom"]
    operator: Literal["equals", "not_equals", "greater_than", "less_than", "contains"] = "equals"
    value: Any = None
    field: str | None = Field(
        default=None,
        description="Dotted path into the event payload; defaults depend on the condition type.",
    )


class NotificationRule(BaseModel):
    id: str = Field(..., description="Stable identifier for the rule.")
    name: str = Field(..., description="Human-friendly rule name used in logs and payloads.")
    enabled: bool = True
    event_types: list[EventType] = Field(
        default_factory=list,
        description="Event types the rule listens to; empty means all events.",
    )
    client_kinds: list[ClientKind] = Field(
        default_factory=list,
        description="Restrict the rule to these client kinds; empty means any kind.",
    )
    conditions: list[NotificationCondition] = Field(
        default_factory=list,
        description="Any matching condition fires the rule; empty fires on every event.",
    )
    channels: list[ChannelName] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Notification rule id must not be empty")
        return normalized


class SlackChannel(BaseModel):
    webhook_url: str
    channel: str | None = None
    username: str = "Agentify Bot"


class DiscordChannel(BaseModel):
    webhook_url: str
    username: str = "Agentify Bot"


class WebhookChannel(BaseModel):
    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)


class EmailChannel(BaseModel):
    to: list[str] = Field(default_factory=list)
    sender: str | None = None


class NotificationChannels(BaseModel):
    slack: SlackChannel | None = None
    discord: DiscordChannel | None = None
    webhook: WebhookChannel | None = None
    email: EmailChannel | None = None


class NotificationConfig(BaseModel):
    channels: NotificationChannels = Field(default_factory=NotificationChannels)
    rules: list[NotificationRule] = Field(default_factory=list)


__all__ = [
    "ChannelName",
    "DiscordChannel",
    "EmailChannel",
    "NotificationChannels",
    "NotificationCondition",
    "NotificationConfig",
    "NotificationRule",
    "SlackChannel",
    "WebhookChannel",
]

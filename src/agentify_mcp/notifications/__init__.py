"""Outbound notifications for bus events and MCP tool calls."""

from .loader import NotificationLoadError, NotificationRuleLoader, load_notification_config
from .manager import NotificationManager, evaluate_condition, format_message
from .models import (
    DiscordChannel,
    EmailChannel,
    NotificationChannels,
    NotificationCondition,
    NotificationConfig,
    NotificationRule,
    SlackChannel,
    WebhookChannel,
)
from .webhook import TOOL_EVENTS, ToolCallWebhook, build_payload

__all__ = [
    "DiscordChannel",
    "EmailChannel",
    "NotificationChannels",
    "NotificationCondition",
    "NotificationConfig",
    "NotificationLoadError",
    "NotificationManager",
    "NotificationRule",
    "NotificationRuleLoader",
    "SlackChannel",
    "TOOL_EVENTS",
    "ToolCallWebhook",
    "WebhookChannel",
    "build_payload",
    "evaluate_condition",
    "format_message",
    "load_notification_config",
]

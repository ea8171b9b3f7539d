"""Rule-based outbound notifications fed by the event bus."""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from ..clients import ClientEntity
from ..events import BusEvent, EventBus, Subscription
from .models import NotificationCondition, NotificationConfig, NotificationRule

logger = logging.getLogger(__name__)

_DEFAULT_FIELDS = {
    "status_change": "to",
    "error": "error",
    "performance": "metrics.memory_usage",
    "task_completed": "trigger",
}


def _lookup(payload: dict[str, Any], dotted: str) -> Any:
    value: Any = payload
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(condition: NotificationCondition, event: BusEvent) -> bool:
    path = condition.field or _DEFAULT_FIELDS.get(condition.type)
    if path is None:
        return False
    value = _lookup(event.payload, path)
    if condition.type == "error" and value is None:
        value = event.payload.get("message")

    expected = condition.value
    if condition.operator == "equals":
        return value == expected
    if condition.operator == "not_equals":
        return value != expected
    if condition.operator in ("greater_than", "less_than"):
        left, right = _as_number(value), _as_number(expected)
        if left is None or right is None:
            return False
        return left > right if condition.operator == "greater_than" else left < right
    if condition.operator == "contains":
        return value is not None and str(expected) in str(value)
    return False


def format_message(event: BusEvent, client: ClientEntity | None = None) -> str:
    if client is not None and client.kind is not None:
        client_info = f"[{client.kind.value}:{client.id}]"
    elif event.client_id:
        client_info = f"[{event.client_id}]"
    else:
        client_info = "[System]"
    body = json.dumps(event.payload, indent=2, default=str)
    return f"{event.timestamp.isoformat()} {client_info} {event.type.value}: {body}"


class NotificationManager:
    """Evaluates notification rules for bus events and delivers matches.

    Deliveries are submitted to an executor and never block the publisher;
    a failed delivery is logged and not retried.
    """

    def __init__(
        self,
        config: NotificationConfig | None = None,
        *,
        client_lookup: Callable[[str], ClientEntity | None] | None = None,
        executor: Executor | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or NotificationConfig()
        self._client_lookup = client_lookup
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="agentify-notify")
        self._http = http_client or httpx.Client(timeout=10.0)
        self._lock = threading.Lock()
        self._subscription: Subscription | None = None
        self.enabled = True

    def attach(self, bus: EventBus) -> Subscription:
        self._subscription = bus.subscribe(self.handle_event)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def close(self) -> None:
        self.detach()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        self._http.close()

    def enable(self) -> None:
        self.enabled = True
        logger.info("Notification system enabled")

    def disable(self) -> None:
        self.enabled = False
        logger.info("Notification system disabled")

    def get_config(self) -> NotificationConfig:
        with self._lock:
            return self._config.model_copy(deep=True)

    def get_rules(self) -> list[NotificationRule]:
        with self._lock:
            return list(self._config.rules)

    def add_rule(self, rule: NotificationRule) -> None:
        with self._lock:
            rules = [existing for existing in self._config.rules if existing.id != rule.id]
            replaced = len(rules) != len(self._config.rules)
            rules.append(rule)
            self._config.rules = rules
        logger.info("Notification rule %s", "updated" if replaced else "added", extra={"rule": rule.id})

    def remove_rule(self, rule_id: str) -> None:
        with self._lock:
            self._config.rules = [rule for rule in self._config.rules if rule.id != rule_id]
        logger.info("Notification rule removed", extra={"rule": rule_id})

    def _set_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._lock:
            for rule in self._config.rules:
                if rule.id == rule_id:
                    rule.enabled = enabled
                    return True
        return False

    def enable_rule(self, rule_id: str) -> bool:
        return self._set_enabled(rule_id, True)

    def disable_rule(self, rule_id: str) -> bool:
        return self._set_enabled(rule_id, False)

    def applicable_rules(self, event: BusEvent, client: ClientEntity | None = None) -> list[NotificationRule]:
        matched: list[NotificationRule] = []
        for rule in self.get_rules():
            if not rule.enabled:
                continue
            if rule.event_types and event.type not in rule.event_types:
                continue
            if rule.client_kinds and (client is None or client.kind not in rule.client_kinds):
                continue
            if rule.conditions and not any(evaluate_condition(c, event) for c in rule.conditions):
                continue
            matched.append(rule)
        return matched

    def handle_event(self, event: BusEvent) -> list[Future]:
        if not self.enabled:
            return []
        client = None
        if event.client_id and self._client_lookup is not None:
            client = self._client_lookup(event.client_id)

        futures: list[Future] = []
        for rule in self.applicable_rules(event, client):
            message = format_message(event, client)
            for channel in rule.channels:
                futures.append(self._executor.submit(self._deliver, channel, message, rule))
        return futures

    def _deliver(self, channel: str, message: str, rule: NotificationRule) -> bool:
        try:
            self.send_to_channel(channel, message, rule)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "Failed to send notification",
                extra={"channel": channel, "rule": rule.id, "error": str(exc)},
            )
            return False
        logger.debug("Notification sent", extra={"channel": channel, "rule": rule.id})
        return True

    def send_to_channel(self, channel: str, message: str, rule: NotificationRule) -> None:
        channels = self._config.channels
        if channel == "slack" and channels.slack is not None:
            self._post(
                channels.slack.webhook_url,
                {"text": message, "channel": channels.slack.channel, "username": channels.slack.username},
            )
        elif channel == "discord" and channels.discord is not None:
            self._post(channels.discord.webhook_url, {"content": message, "username": channels.discord.username})
        elif channel == "webhook" and channels.webhook is not None:
            response = self._http.request(
                channels.webhook.method,
                channels.webhook.url,
                json={
                    "message": message,
                    "rule": rule.name,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                headers=channels.webhook.headers,
            )
            response.raise_for_status()
        elif channel == "email" and channels.email is not None:
            logger.info("Email notification would be sent", extra={"rule": rule.name, "to": channels.email.to})
        else:
            logger.warning("Unknown or unconfigured notification channel", extra={"channel": channel})

    def _post(self, url: str, payload: dict[str, Any]) -> None:
        response = self._http.post(url, json=payload)
        response.raise_for_status()

    def test_notification(self, channel: str, message: str | None = None) -> bool:
        rule = NotificationRule(id="test", name="Test Rule", channels=[channel])  # type: ignore[list-item]
        return self._deliver(
            channel,
            message or "This is a test notification from Agentify MCP Server",
            rule,
        )


__all__ = ["NotificationManager", "evaluate_condition", "format_message"]

"""Tool-call webhook reporting."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

TOOL_EVENTS = ("tool_called", "tool_completed", "tool_error")


def build_payload(
    event: str,
    tool_name: str,
    *,
    client_id: str | None = None,
    arguments: dict[str, Any] | None = None,
    result: Any = None,
    error: str | None = None,
    duration: float | None = None,
) -> dict[str, Any]:
    if event not in TOOL_EVENTS:
        raise ValueError(f"Unknown tool event '{event}'")
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "toolName": tool_name,
        "clientId": client_id,
    }
    if arguments is not None:
        payload["arguments"] = arguments
    if result is not None:
        payload["result"] = result
    if error is not None:
        payload["error"] = error
    if duration is not None:
        payload["duration"] = duration
    return payload


class ToolCallWebhook:
    """Posts tool lifecycle payloads to a single URL without blocking the caller."""

    def __init__(
        self,
        url: str,
        *,
        executor: Executor | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="agentify-webhook")
        self._client = client or httpx.Client(
            timeout=5.0,
            headers={"User-Agent": f"agentify-mcp/{__version__}"},
        )

    def send(self, event: str, tool_name: str, **fields: Any) -> Future:
        payload = build_payload(event, tool_name, **fields)
        return self._executor.submit(self._post, payload)

    def send_sync(self, event: str, tool_name: str, **fields: Any) -> bool:
        return self._post(build_payload(event, tool_name, **fields))

    def _post(self, payload: dict[str, Any]) -> bool:
        try:
            response = self._client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Tool-call webhook delivery failed",
                extra={"event": payload.get("event"), "tool": payload.get("toolName"), "error": str(exc)},
            )
            return False
        return True

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        self._client.close()


__all__ = ["TOOL_EVENTS", "ToolCallWebhook", "build_payload"]

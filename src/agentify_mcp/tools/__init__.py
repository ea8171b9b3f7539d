"""Tool registration for Agentify MCP."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, TypeVar

from fastmcp import Context, FastMCP

from ..clients import ClientKind, ClientStatus
from ..config import AgentifySettings
from ..notifications import ToolCallWebhook
from ..registry import AgentRegistry

T = TypeVar("T")

OUTCOMES = ("success", "partial", "failed")


@dataclass(slots=True)
class ToolHandles:
    """Plain callables behind each registered tool."""

    task_started: Callable[..., dict[str, Any]]
    task_completed: Callable[..., dict[str, Any]]
    auto_task_tracker: Callable[..., dict[str, Any]]
    register_client: Callable[..., dict[str, Any]]
    unregister_client: Callable[..., dict[str, Any]]
    update_client_status: Callable[..., dict[str, Any]]
    get_client: Callable[..., dict[str, Any]]
    list_clients: Callable[..., list[dict[str, Any]]]
    client_stats: Callable[..., dict[str, Any]]


def register_tools(
    server: FastMCP,
    *,
    registry: AgentRegistry,
    settings: AgentifySettings,
    webhook: ToolCallWebhook | None = None,
) -> ToolHandles:
    """Register Agentify's MCP tools on the server."""

    def _caller_id(client_id: str | None, context: Context | None) -> str:
        return client_id or getattr(context, "client_id", None) or settings.default_client_id

    def _ensure_client(client_id: str) -> None:
        if registry.store.is_active(client_id):
            return
        registry.register_client(client_id, ClientKind.GENERIC_AGENT, client_id=client_id)

    def _call(
        tool_name: str,
        caller: str,
        arguments: dict[str, Any],
        context: Context | None,
        action: Callable[[], T],
    ) -> T:
        """Run a tool body with request accounting and webhook reporting."""

        started = time.perf_counter()
        if webhook is not None:
            webhook.send("tool_called", tool_name, client_id=caller, arguments=arguments)
        try:
            result = action()
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 3)
            if registry.store.is_active(caller):
                registry.increment_error(caller)
            if webhook is not None:
                webhook.send(
                    "tool_error",
                    tool_name,
                    client_id=caller,
                    arguments=arguments,
                    error=str(exc),
                    duration=duration_ms,
                )
            _emit_log(
                context,
                "error",
                "Tool call failed",
                extra={"tool": tool_name, "client_id": caller, "error": str(exc)},
            )
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        if registry.store.is_active(caller):
            registry.increment_request(caller)
        if webhook is not None:
            webhook.send(
                "tool_completed",
                tool_name,
                client_id=caller,
                arguments=arguments,
                result=result,
                duration=duration_ms,
            )
        return result

    def _require_client(client_id: str) -> dict[str, Any]:
        entity = registry.get_client(client_id)
        if entity is None:
            raise ValueError(f"Client '{client_id}' not found")
        return entity.to_dict()

    def _task_started(
        task_description: str,
        client_id: str | None = None,
        idle_timeout_ms: int | None = None,
        track: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record the start of a task and arm completion detection."""

        caller = _caller_id(client_id, context)
        _ensure_client(caller)

        def action() -> dict[str, Any]:
            if not task_description.strip():
                raise ValueError("task_description must not be empty")
            registry.record_task_started(
                caller, task_description, track=track, idle_timeout_ms=idle_timeout_ms
            )
            _emit_log(
                context,
                "info",
                "Task started",
                extra={"client_id": caller, "task": task_description},
            )
            return {
                "client_id": caller,
                "task": task_description,
                "tracking": registry.detector.is_tracking(caller),
                "client": _require_client(caller),
            }

        return _call(
            "task-started",
            caller,
            {"task_description": task_description, "idle_timeout_ms": idle_timeout_ms, "track": track},
            context,
            action,
        )

    def _task_completed(
        task_description: str,
        outcome: Literal["success", "partial", "failed"] = "success",
        details: str | None = None,
        client_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a finished task and close the client's completion episode."""

        caller = _caller_id(client_id, context)
        _ensure_client(caller)

        def action() -> dict[str, Any]:
            if outcome not in OUTCOMES:
                raise ValueError(f"Invalid outcome '{outcome}'. Must be one of {list(OUTCOMES)}")
            registry.record_task_completed(caller, task_description, outcome, details)
            _emit_log(
                context,
                "info",
                "Task completed",
                extra={"client_id": caller, "task": task_description, "outcome": outcome},
            )
            return {
                "client_id": caller,
                "task": task_description,
                "outcome": outcome,
                "details": details,
                "client": _require_client(caller),
            }

        return _call(
            "task-completed",
            caller,
            {"task_description": task_description, "outcome": outcome, "details": details},
            context,
            action,
        )

    def _auto_task_tracker(
        task_threshold_seconds: float = 30,
        client_id: str | None = None,
        monitor_file_changes: bool | None = None,
        watch_paths: list[str] | None = None,
        pid: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start automatic completion tracking for the calling client."""

        caller = _caller_id(client_id, context)
        _ensure_client(caller)

        def action() -> dict[str, Any]:
            if task_threshold_seconds <= 0:
                raise ValueError("task_threshold_seconds must be > 0")
            started = registry.start_tracking(
                caller,
                idle_timeout_ms=int(task_threshold_seconds * 1000),
                monitor_file_changes=monitor_file_changes,
                watch_paths=watch_paths,
            )
            process_watched = False
            if pid is not None:
                process_watched = registry.monitor_process(caller, pid)
            _emit_log(
                context,
                "info",
                "Auto task tracker activated",
                extra={"client_id": caller, "threshold_seconds": task_threshold_seconds, "pid": pid},
            )
            return {
                "client_id": caller,
                "tracking": started,
                "threshold_seconds": task_threshold_seconds,
                "process_watched": process_watched,
                "session": registry.detector.session_info(caller),
            }

        return _call(
            "auto-task-tracker",
            caller,
            {
                "task_threshold_seconds": task_threshold_seconds,
                "monitor_file_changes": monitor_file_changes,
                "watch_paths": watch_paths,
                "pid": pid,
            },
            context,
            action,
        )

    def _register_client(
        name: str,
        kind: str = ClientKind.GENERIC_AGENT.value,
        client_id: str | None = None,
        working_directory: str | None = None,
        metadata: dict[str, Any] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Register (or replace) a client session."""

        caller = _caller_id(None, context)
        _ensure_client(caller)

        def action() -> dict[str, Any]:
            entity = registry.register_client(
                name,
                kind,
                client_id=client_id,
                working_directory=working_directory,
                metadata=metadata,
            )
            _emit_log(
                context,
                "info",
                "Client registered",
                extra={"client_id": entity.id, "kind": entity.kind.value if entity.kind else None},
            )
            return entity.to_dict()

        return _call(
            "register-client",
            caller,
            {"name": name, "kind": kind, "client_id": client_id, "working_directory": working_directory},
            context,
            action,
        )

    def _unregister_client(client_id: str, context: Context | None = None) -> dict[str, Any]:
        """Disconnect a client, stopping any completion detection for it."""

        caller = _caller_id(None, context)
        _ensure_client(caller)

        def action() -> dict[str, Any]:
            entity = registry.unregister_client(client_id)
            if entity is None:
                raise ValueError(f"Client '{client_id}' not found")
            _emit_log(context, "info", "Client unregistered", extra={"client_id": client_id})
            return entity.to_dict()

        return _call("unregister-client", caller, {"client_id": client_id}, context, action)

    def _update_client_status(
        client_id: str,
        status: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Move a client to a new status if the transition is allowed."""

        caller = _caller_id(None, context)
        _ensure_client(caller)

        def action() -> dict[str, Any]:
            current = _require_client(client_id)
            applied = registry.apply_transition(client_id, status)
            entity = registry.get_client(client_id)
            _emit_log(
                context,
                "info" if applied else "warning",
                "Client status update",
                extra={"client_id": client_id, "from": current["status"], "to": status, "applied": applied},
            )
            return {
                "client_id": client_id,
                "applied": applied,
                "previous_status": current["status"],
                "status": entity.status.value if entity else ClientStatus.DISCONNECTED.value,
            }

        return _call(
            "update-client-status",
            caller,
            {"client_id": client_id, "status": status},
            context,
            action,
        )

    def _get_client(client_id: str, context: Context | None = None) -> dict[str, Any]:
        caller = _caller_id(None, context)
        _ensure_client(caller)
        return _call("get-client", caller, {"client_id": client_id}, context, lambda: _require_client(client_id))

    def _list_clients(
        kind: str | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List active clients, optionally filtered by kind."""

        caller = _caller_id(None, context)
        _ensure_client(caller)

        def action() -> list[dict[str, Any]]:
            if kind is None:
                clients = registry.list_active()
            else:
                clients = [
                    entity
                    for entity in registry.store.list_by_kind(ClientKind(kind))
                    if entity.status is not ClientStatus.DISCONNECTED
                ]
            _emit_log(context, "debug", "Listing clients", extra={"count": len(clients), "kind": kind})
            return [entity.to_dict() for entity in clients]

        return _call("list-clients", caller, {"kind": kind}, context, action)

    def _client_stats(context: Context | None = None) -> dict[str, Any]:
        caller = _caller_id(None, context)
        _ensure_client(caller)
        return _call("client-stats", caller, {}, context, registry.get_stats)

    server.tool(
        name="task-started",
        description="Call this when you start any task, answer a question, or start work.",
    )(_task_started)

    server.tool(
        name="task-completed",
        description=(
            "Call this when you finish any task, answer a question, or complete work. "
            "Outcome is one of success, partial, or failed."
        ),
    )(_task_completed)

    server.tool(
        name="auto-task-tracker",
        description=(
            "Monitor the current task automatically. Completion is detected after "
            "task_threshold_seconds without activity, from completion markers in "
            "watched files, or when the given process exits."
        ),
    )(_auto_task_tracker)

    server.tool(
        name="register-client",
        description="Register an agent client session with a name and kind.",
    )(_register_client)

    server.tool(
        name="unregister-client",
        description="Disconnect an agent client session and stop its task tracking.",
    )(_unregister_client)

    server.tool(
        name="update-client-status",
        description="Change a client's status; disallowed transitions are reported, not applied.",
    )(_update_client_status)

    server.tool(
        name="get-client",
        description="Fetch a snapshot of one client session.",
    )(_get_client)

    server.tool(
        name="list-clients",
        description="List connected client sessions, optionally filtered by kind.",
    )(_list_clients)

    server.tool(
        name="client-stats",
        description="Aggregate counts by kind and status plus tracking and process metrics.",
    )(_client_stats)

    return ToolHandles(
        task_started=_task_started,
        task_completed=_task_completed,
        auto_task_tracker=_auto_task_tracker,
        register_client=_register_client,
        unregister_client=_unregister_client,
        update_client_status=_update_client_status,
        get_client=_get_client,
        list_clients=_list_clients,
        client_stats=_client_stats,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)

"""FastMCP server bootstrap for Agentify."""

import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import FastMCP

from . import __version__
from .config import AgentifySettings, get_settings
from .events import EventType
from .notifications import (
    NotificationConfig,
    NotificationLoadError,
    NotificationManager,
    NotificationRuleLoader,
    ToolCallWebhook,
)
from .registry import AgentRegistry
from .storage import ArchiveUnavailableError, EventArchive
from .tools import register_tools

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()


def configure_logging(level: str) -> None:
    """Configure root logging for the Agentify server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def render_agents_report(registry: AgentRegistry) -> str:
    """Markdown report of every live client."""

    lines = [
        "# Agent Status Report",
        "",
        f"Generated: {datetime.now(timezone.utc).isoformat()}",
    ]
    clients = registry.store.list_all()
    if not clients:
        lines.extend(["", "No clients connected."])
    for client in clients:
        metrics = client.metrics
        lines.extend(
            [
                "",
                f"## {client.name} ({client.id})",
                f"- **Status**: {client.status.value}",
                f"- **Kind**: {client.kind.value if client.kind else 'unknown'}",
                f"- **Connected**: {client.connected_at.isoformat()}",
                f"- **Last activity**: {client.last_activity_at.isoformat()}",
                f"- **Requests**: {metrics.request_count if metrics else 0}",
                f"- **Errors**: {metrics.error_count if metrics else 0}",
            ]
        )
        if client.context.current_task:
            lines.append(f"- **Current task**: {client.context.current_task}")
        last_task = client.context.last_completed_task
        if last_task is not None:
            lines.append(
                f"- **Last completed**: {last_task.description} ({last_task.outcome}, {last_task.trigger})"
            )
    return "\n".join(lines) + "\n"


def create_server(
    settings: Optional[AgentifySettings] = None,
    registry: AgentRegistry | None = None,
    *,
    archive: EventArchive | None = None,
    notification_manager: NotificationManager | None = None,
    webhook: ToolCallWebhook | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the registry, tools, and resources."""

    settings = settings or get_settings()
    registry = registry or AgentRegistry(settings)

    notification_metadata: dict[str, Any] = {
        "paths": [str(path) for path in settings.notification_rule_paths],
        "rules": 0,
        "error": None,
    }
    if notification_manager is None:
        try:
            notification_config = NotificationRuleLoader(settings.notification_rule_paths).load()
        except NotificationLoadError as exc:
            logger.warning("Notification rules could not be loaded", extra={"error": str(exc)})
            notification_metadata["error"] = str(exc)
            notification_config = NotificationConfig()
        notification_manager = NotificationManager(
            notification_config,
            client_lookup=registry.get_client,
        )
    notification_manager.attach(registry.bus)
    notification_metadata["rules"] = len(notification_manager.get_rules())

    archive_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "agentify_events",
        "error": None,
    }
    if archive is None:
        try:
            archive = EventArchive(settings.chroma_persist_path)
            archive.ping()
        except ArchiveUnavailableError as exc:
            archive_metadata["error"] = str(exc)
            archive = None
    if archive is not None:
        archive.attach(
            registry.bus,
            [event_type for event_type in EventType if event_type is not EventType.CLIENT_METRICS_UPDATED],
        )
        archive_metadata["available"] = True

    if webhook is None and settings.webhook_url:
        webhook = ToolCallWebhook(settings.webhook_url)

    server = FastMCP(
        name="Agentify MCP",
        version=__version__,
        instructions=(
            "Agentify tracks connected agent clients and detects when their tasks "
            "finish. Call task-started when work begins and task-completed when it "
            "ends; auto-task-tracker detects completion from idle time, file "
            "activity, or process exit."
        ),
    )

    handles = register_tools(server, registry=registry, settings=settings, webhook=webhook)

    def status_resource() -> str:
        """Return a JSON string summarizing basic runtime state."""

        stats = registry.get_stats()
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "clients": {
                "total": stats["total"],
                "active": stats["active"],
                "by_status": stats["by_status"],
            },
            "tracking": stats["tracking"],
            "storage": {"chroma": archive_metadata},
            "notifications": {**notification_metadata, "enabled": notification_manager.enabled},
            "webhook": {"configured": webhook is not None},
        }
        return json.dumps(payload)

    def agents_resource() -> str:
        return render_agents_report(registry)

    def config_resource() -> str:
        config = settings.model_dump(mode="json")
        config["webhook_url"] = "configured" if settings.webhook_url else None
        return json.dumps(config, indent=2)

    def metrics_resource() -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(time.monotonic() - _STARTED_AT, 3),
            "pid": os.getpid(),
            "clients": registry.get_stats(),
        }
        return json.dumps(payload, indent=2)

    def client_status_resource(client_id: str) -> str:
        """Return one client's snapshot with its tracking session, if any."""

        client = registry.get_client(client_id)
        if client is None:
            raise ValueError(f"Client not found: {client_id}")
        payload = client.to_dict()
        payload["tracking"] = registry.detector.session_info(client_id)
        return json.dumps(payload, indent=2)

    server.resource(
        "resource://agentify/status",
        name="agentify_status",
        description="Provides the current runtime status for the Agentify MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )(status_resource)
    server.resource(
        "resource://agentify/agents",
        name="agentify_agents",
        description="Detailed status of all connected agents.",
        mime_type="text/markdown",
        tags={"status"},
    )(agents_resource)
    server.resource(
        "resource://agentify/config",
        name="agentify_config",
        description="Current server configuration.",
        mime_type="application/json",
        tags={"config"},
    )(config_resource)
    server.resource(
        "resource://agentify/metrics",
        name="agentify_metrics",
        description="Client statistics and process performance metrics.",
        mime_type="application/json",
        tags={"metrics"},
    )(metrics_resource)
    server.resource(
        "resource://agentify/clients/{client_id}/status",
        name="agentify_client_status",
        description="Status, metrics, and context of a single client.",
        mime_type="application/json",
        tags={"status"},
    )(client_status_resource)

    setattr(server, "registry", registry)
    setattr(server, "event_archive", archive)
    setattr(server, "archive_metadata", archive_metadata)
    setattr(server, "notification_manager", notification_manager)
    setattr(server, "tool_webhook", webhook)
    setattr(server, "tool_handles", handles)
    setattr(
        server,
        "resource_functions",
        {
            "status": status_resource,
            "agents": agents_resource,
            "config": config_resource,
            "metrics": metrics_resource,
            "client_status": client_status_resource,
        },
    )
    return server


def main() -> None:
    """Entry point for running the Agentify MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    registry: AgentRegistry = getattr(server, "registry")
    logger.info(
        "Launching Agentify MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "chroma_available": getattr(server, "archive_metadata", {}).get("available"),
            "webhook_configured": settings.webhook_url is not None,
        },
    )
    registry.start()
    try:
        server.run()
    finally:
        registry.shutdown()
        getattr(server, "notification_manager").close()
        archive = getattr(server, "event_archive", None)
        if archive is not None:
            archive.close()
        webhook = getattr(server, "tool_webhook", None)
        if webhook is not None:
            webhook.close()


if __name__ == "__main__":
    main()

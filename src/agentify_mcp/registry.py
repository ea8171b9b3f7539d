"""Session registry facade wiring the store, state machine, detector, and sampler."""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import Any
from uuid import uuid4

from .clients import (
    ClientContext,
    ClientEntity,
    ClientKind,
    ClientStatus,
    ClientStore,
    CompletedTaskRecord,
    StatusStateMachine,
    capabilities_for,
)
from .config import AgentifySettings
from .detection import CompletionEvent, TaskCompletionDetector, TrackingConfig
from .events import BusEvent, EventBus, EventType
from .monitoring import MetricsSampler
from .scheduling import PeriodicTask, Scheduler, ThreadingScheduler
from .watcher import FileWatchService, WatchdogFileWatchService

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Inbound interface used by the MCP tool layer.

    Owns one instance of each core component and keeps them consistent:
    activity reaches the detector, disconnects tear down detection, and
    completions move running clients to ``COMPLETED``.
    """

    def __init__(
        self,
        settings: AgentifySettings | None = None,
        *,
        bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
        watch_service: FileWatchService | None = None,
        executor: Executor | None = None,
        sampler: MetricsSampler | None = None,
    ) -> None:
        self.settings = settings or AgentifySettings()
        self.bus = bus or EventBus()
        self._scheduler = scheduler or ThreadingScheduler()
        self.store = ClientStore(self.bus, history_limit=self.settings.history_limit)
        self.state_machine = StatusStateMachine(self.store)
        self.detector = TaskCompletionDetector(
            self.store,
            watch_service=watch_service or WatchdogFileWatchService(),
            scheduler=self._scheduler,
            executor=executor,
        )
        self.sampler = sampler or MetricsSampler(
            self.store,
            interval_seconds=self.settings.metrics_interval_seconds,
            scheduler=self._scheduler,
        )
        self._cleanup = PeriodicTask(
            "inactive-client-cleanup",
            self.settings.cleanup_interval_seconds,
            self.cleanup_inactive,
            self._scheduler,
        )
        self.bus.subscribe(self._on_task_completed, [EventType.TASK_COMPLETED])

    def start(self) -> None:
        self.sampler.start()
        self._cleanup.start()
        logger.info(
            "Agent registry started",
            extra={
                "metrics_interval": self.settings.metrics_interval_seconds,
                "cleanup_interval": self.settings.cleanup_interval_seconds,
            },
        )

    def shutdown(self) -> None:
        self._cleanup.stop()
        self.sampler.stop()
        self.detector.shutdown()
        logger.info("Agent registry stopped")

    def register_client(
        self,
        name: str,
        kind: ClientKind | str = ClientKind.GENERIC_AGENT,
        *,
        client_id: str | None = None,
        working_directory: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ClientEntity:
        """Register a client; re-registering an id replaces the previous entity."""

        entity = ClientEntity(
            id=client_id or f"client-{uuid4().hex[:12]}",
            name=name,
            kind=kind,  # type: ignore[arg-type]
            context=ClientContext(working_directory=working_directory),
            metadata=dict(metadata or {}),
        )
        # A replaced entity starts a fresh lifecycle.
        self.detector.stop_tracking(entity.id)
        return self.store.register(entity)

    def unregister_client(self, client_id: str) -> ClientEntity | None:
        self.detector.stop_tracking(client_id)
        return self.store.unregister(client_id)

    def get_client(self, client_id: str) -> ClientEntity | None:
        return self.store.get(client_id)

    def list_active(self) -> list[ClientEntity]:
        return self.store.list_active()

    def apply_transition(self, client_id: str, target: ClientStatus | str) -> bool:
        applied = self.state_machine.apply_transition(client_id, target)
        if not applied:
            return False
        if ClientStatus(target) is ClientStatus.DISCONNECTED:
            self.unregister_client(client_id)
        else:
            self.detector.record_activity(client_id, "status")
        return True

    def touch(self, client_id: str) -> bool:
        touched = self.store.touch(client_id)
        if touched:
            self.detector.record_activity(client_id, "touch")
        return touched

    def increment_request(self, client_id: str) -> int | None:
        count = self.store.increment_request(client_id)
        if count is not None:
            self.detector.record_activity(client_id, "request")
        return count

    def increment_error(self, client_id: str) -> int | None:
        count = self.store.increment_error(client_id)
        if count is not None:
            self.detector.record_activity(client_id, "error")
        return count

    def update_context(self, client_id: str, **changes: Any) -> ClientEntity | None:
        snapshot = self.store.update_context(client_id, **changes)
        if snapshot is not None:
            self.detector.record_activity(client_id, "context")
        return snapshot

    def tracking_config_for(self, client_id: str, **overrides: Any) -> TrackingConfig:
        """Build a tracking config from the client kind's defaults and settings."""

        entity = self.store.get(client_id)
        kind = entity.kind if entity and entity.kind else ClientKind.GENERIC_AGENT
        capabilities = capabilities_for(kind)
        watch_paths = list(self.settings.watch_paths)
        if entity is not None and entity.context.working_directory:
            watch_paths = [entity.context.working_directory]

        values: dict[str, Any] = {
            "idle_timeout_ms": self.settings.idle_timeout_ms or capabilities.default_idle_timeout_ms,
            "monitor_file_changes": self.settings.monitor_file_changes and capabilities.file_watching,
            "watch_paths": watch_paths,
            "ignore_patterns": list(self.settings.ignore_patterns),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return TrackingConfig(**values)

    def start_tracking(
        self,
        client_id: str,
        config: TrackingConfig | None = None,
        **overrides: Any,
    ) -> bool:
        if config is None:
            config = self.tracking_config_for(client_id, **overrides)
        return self.detector.start_tracking(client_id, config)

    def stop_tracking(self, client_id: str) -> bool:
        return self.detector.stop_tracking(client_id)

    def mark_task_completed(self, client_id: str, reason: str = "manual") -> CompletionEvent | None:
        return self.detector.mark_task_completed(client_id, reason)

    def signal_process_exit(
        self, client_id: str, exit_code: int | None, process: str | None = None
    ) -> CompletionEvent | None:
        return self.detector.signal_process_exit(client_id, exit_code, process)

    def monitor_process(self, client_id: str, pid: int, *, poll_interval: float = 5.0) -> bool:
        return self.detector.monitor_process(client_id, pid, poll_interval=poll_interval)

    def record_task_started(
        self,
        client_id: str,
        description: str,
        *,
        track: bool = True,
        idle_timeout_ms: int | None = None,
    ) -> ClientEntity | None:
        """Note a new task, move the client to ``RUNNING``, and arm detection."""

        if self.update_context(client_id, current_task=description) is None:
            return None
        entity = self.store.get(client_id)
        if entity is not None and entity.status is not ClientStatus.RUNNING:
            self.apply_transition(client_id, ClientStatus.RUNNING)
        if track:
            self.start_tracking(client_id, idle_timeout_ms=idle_timeout_ms)
        return self.store.get(client_id)

    def record_task_completed(
        self,
        client_id: str,
        description: str,
        outcome: str = "success",
        details: str | None = None,
    ) -> ClientEntity | None:
        """Store the client's last completed task and close its completion episode."""

        record = CompletedTaskRecord(
            description=description,
            outcome=outcome,
            details=details,
            trigger="manual",
            completed_at=self.store.now(),
        )
        if self.update_context(client_id, last_completed_task=record, current_task=None) is None:
            return None
        if outcome == "failed":
            self.apply_transition(client_id, ClientStatus.ERROR)
        self.detector.mark_task_completed(client_id, reason=description)
        entity = self.store.get(client_id)
        if entity is not None and outcome != "failed" and entity.status is ClientStatus.RUNNING:
            self.apply_transition(client_id, ClientStatus.COMPLETED)
        return self.store.get(client_id)

    def _on_task_completed(self, event: BusEvent) -> None:
        client_id = event.client_id
        if client_id is None:
            return
        trigger = event.payload.get("trigger", "manual")

        def record(entity: ClientEntity) -> ClientStatus:
            if entity.context.current_task is not None:
                entity.context.last_completed_task = CompletedTaskRecord(
                    description=entity.context.current_task,
                    outcome="success",
                    trigger=trigger,
                    completed_at=event.timestamp,
                )
                entity.context.current_task = None
            return entity.status

        status = self.store.mutate(client_id, record)
        if status is ClientStatus.RUNNING:
            self.state_machine.apply_transition(client_id, ClientStatus.COMPLETED)

    def cleanup_inactive(self) -> list[str]:
        """Unregister clients idle longer than the configured inactivity timeout."""

        removed: list[str] = []
        for entity in self.store.sweep_inactive(self.settings.inactivity_timeout_ms):
            logger.warning("Cleaning up inactive client", extra={"client_id": entity.id})
            if self.unregister_client(entity.id) is not None:
                removed.append(entity.id)
        return removed

    def get_stats(self) -> dict[str, Any]:
        stats = self.store.stats()
        stats["tracking"] = self.detector.tracking_status()
        sample = self.sampler.last_sample
        stats["process"] = sample.to_dict() if sample else None
        return stats


__all__ = ["AgentRegistry"]

"""Per-client task-completion detection."""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable

from ..clients import ClientStore
from ..errors import NotFound, WatcherFailure
from ..events import EventType
from ..monitoring.processes import ProcessWatch
from ..scheduling import Scheduler, ThreadingScheduler, TimerHandle
from ..watcher import ADDED, CHANGED, EVENT_KINDS, FileWatchService, WatchSubscription
from .models import CompletionEvent, CompletionTrigger, SessionPhase, TrackingConfig
from .patterns import compile_patterns, find_keywords, matches_completion_file, read_tail

logger = logging.getLogger(__name__)

_OPEN_PHASES = frozenset({SessionPhase.ARMED, SessionPhase.EVALUATING})


@dataclass(slots=True, eq=False)
class TrackingSession:
    """Mutable detection state owned by exactly one client."""

    client_id: str
    config: TrackingConfig
    patterns: list[re.Pattern[str]]
    phase: SessionPhase = SessionPhase.ARMED
    timer: TimerHandle | None = None
    generation: int = 0
    subscription: WatchSubscription | None = None
    process_watch: ProcessWatch | None = None
    last_matched_file: str | None = None
    pending_evaluations: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def open(self) -> bool:
        return self.phase in _OPEN_PHASES

    def describe(self) -> dict[str, Any]:
        return {
            "client_id": self.client_id,
            "phase": self.phase.value,
            "idle_timeout_ms": self.config.idle_timeout_ms,
            "monitor_file_changes": self.config.monitor_file_changes,
            "watching": self.subscription is not None,
            "process_pid": self.process_watch.pid if self.process_watch else None,
            "last_matched_file": self.last_matched_file,
            "pending_evaluations": self.pending_evaluations,
            "started_at": self.started_at.isoformat(),
        }


@dataclass(slots=True)
class _Resources:
    subscription: WatchSubscription | None = None
    process_watch: ProcessWatch | None = None


class TaskCompletionDetector:
    """Combines an idle timer, file heuristics, and explicit signals per client.

    Each tracking session emits at most one ``TASK_COMPLETED`` event. Once a
    completion fires, the session is closed and its timer, watcher
    subscription, and process watch are released; detecting another task for
    the same client requires a new :meth:`start_tracking` call.
    """

    def __init__(
        self,
        store: ClientStore,
        *,
        watch_service: FileWatchService | None = None,
        scheduler: Scheduler | None = None,
        executor: Executor | None = None,
        default_config: TrackingConfig | None = None,
    ) -> None:
        self._store = store
        self._bus = store.bus
        self._watch_service = watch_service
        self._scheduler = scheduler or ThreadingScheduler()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="agentify-detect"
        )
        self._default_config = default_config or TrackingConfig()
        self._lock = threading.Lock()
        self._sessions: dict[str, TrackingSession] = {}
        self._completions = 0

    @property
    def default_config(self) -> TrackingConfig:
        return self._default_config

    def _session(self, client_id: str) -> TrackingSession | None:
        with self._lock:
            return self._sessions.get(client_id)

    def is_tracking(self, client_id: str) -> bool:
        session = self._session(client_id)
        return session is not None and session.open

    def session_info(self, client_id: str) -> dict[str, Any] | None:
        session = self._session(client_id)
        if session is None:
            return None
        with session.lock:
            return session.describe()

    def start_tracking(self, client_id: str, config: TrackingConfig | None = None) -> bool:
        """Open a new completion episode for ``client_id``.

        Any session already open for the client is stopped first.
        """

        if self._store.get(client_id) is None:
            logger.warning("Cannot track unknown client", extra={"client_id": client_id})
            return False

        config = config or self._default_config
        self.stop_tracking(client_id)

        session = TrackingSession(
            client_id=client_id,
            config=config,
            patterns=compile_patterns(config.completion_file_patterns),
        )
        with session.lock:
            with self._lock:
                self._sessions[client_id] = session
            self._arm_timer(session)
            if config.monitor_file_changes:
                self._subscribe(session)

        logger.info(
            "Task monitoring started",
            extra={
                "client_id": client_id,
                "idle_timeout_ms": config.idle_timeout_ms,
                "file_monitoring": session.subscription is not None,
            },
        )
        return True

    def _subscribe(self, session: TrackingSession) -> None:
        if self._watch_service is None:
            logger.warning(
                "File monitoring requested without a watch service",
                extra={"client_id": session.client_id},
            )
            return
        config = session.config
        try:
            subscription = self._watch_service.watch(config.watch_paths, config.ignore_patterns)
            for kind in sorted(EVENT_KINDS):
                subscription.on(kind, partial(self._on_file_event, session, kind))
        except WatcherFailure as exc:
            logger.warning(
                "File watcher unavailable; continuing without file-based detection",
                extra={"client_id": session.client_id, "error": str(exc)},
            )
            return
        session.subscription = subscription

    def _arm_timer(self, session: TrackingSession) -> None:
        if session.timer is not None:
            session.timer.cancel()
        session.generation += 1
        generation = session.generation
        session.timer = self._scheduler.call_later(
            session.config.idle_timeout_seconds,
            partial(self._on_idle, session, generation),
        )

    def _on_idle(self, session: TrackingSession, generation: int) -> None:
        # A cancelled timer may already be running; the generation check drops it.
        self._complete(
            session,
            CompletionTrigger.IDLE_TIMEOUT,
            {
                "reason": "No activity detected for specified timeout period",
                "timeoutMs": session.config.idle_timeout_ms,
            },
            guard=lambda: session.generation == generation,
        )

    def record_activity(self, client_id: str, source: str = "activity") -> bool:
        """Reset the idle timer for an open session."""

        session = self._session(client_id)
        if session is None:
            return False
        with session.lock:
            if not session.open:
                return False
            self._arm_timer(session)
        logger.debug("Activity observed", extra={"client_id": client_id, "source": source})
        return True

    def handle_file_change(self, client_id: str, kind: str, path: str) -> None:
        session = self._session(client_id)
        if session is None:
            return
        self._on_file_event(session, kind, path)

    def _on_file_event(self, session: TrackingSession, kind: str, path: str) -> None:
        with session.lock:
            if not session.open:
                return
            self._bus.emit(EventType.FILE_CHANGED, session.client_id, kind=kind, path=path)
            self._arm_timer(session)
            inspect = kind in (ADDED, CHANGED) and matches_completion_file(path, session.patterns)
            if inspect:
                session.phase = SessionPhase.EVALUATING
                session.pending_evaluations += 1

        self._store.touch(session.client_id)
        if not inspect:
            return
        try:
            future = self._executor.submit(read_tail, path)
        except RuntimeError as exc:
            logger.warning(
                "Could not schedule file inspection",
                extra={"client_id": session.client_id, "path": path, "error": str(exc)},
            )
            self._finish_evaluation(session, path, None)
            return
        future.add_done_callback(partial(self._finish_evaluation, session, path))

    def _finish_evaluation(self, session: TrackingSession, path: str, future: Future | None) -> None:
        content = ""
        if future is not None:
            try:
                content = future.result()
            except Exception as exc:
                logger.debug("File inspection failed", extra={"path": path, "error": str(exc)})
        matched = find_keywords(content, session.config.completion_keywords) if content else []

        with session.lock:
            session.pending_evaluations = max(session.pending_evaluations - 1, 0)
            if not session.open:
                return
            if not matched:
                if session.pending_evaluations == 0:
                    session.phase = SessionPhase.ARMED
                return
            session.last_matched_file = path

        self._complete(
            session,
            CompletionTrigger.FILE_ANALYSIS,
            {"file": path, "matchedKeywords": matched},
        )

    def mark_task_completed(self, client_id: str, reason: str = "manual") -> CompletionEvent | None:
        session = self._session(client_id)
        if session is None:
            logger.debug("No open completion episode", extra={"client_id": client_id})
            return None
        return self._complete(session, CompletionTrigger.MANUAL, {"reason": reason})

    def signal_process_exit(
        self,
        client_id: str,
        exit_code: int | None,
        process: str | None = None,
    ) -> CompletionEvent | None:
        session = self._session(client_id)
        if session is None:
            return None
        return self._process_exited(session, exit_code, process)

    def _process_exited(
        self,
        session: TrackingSession,
        exit_code: int | None,
        process: str | None,
    ) -> CompletionEvent | None:
        return self._complete(
            session,
            CompletionTrigger.PROCESS_COMPLETION,
            {"exitCode": exit_code, "process": process},
        )

    def monitor_process(self, client_id: str, pid: int, *, poll_interval: float = 5.0) -> bool:
        """Complete the client's episode when process ``pid`` exits."""

        session = self._session(client_id)
        if session is None:
            logger.warning("Cannot monitor process without tracking", extra={"client_id": client_id})
            return False
        try:
            watch = ProcessWatch(
                pid,
                partial(self._process_exited, session),
                scheduler=self._scheduler,
                poll_interval=poll_interval,
            )
        except NotFound as exc:
            logger.warning("Process monitoring unavailable", extra={"client_id": client_id, "error": str(exc)})
            return False

        previous: ProcessWatch | None = None
        with session.lock:
            if not session.open:
                return False
            previous = session.process_watch
            session.process_watch = watch.start()
        if previous is not None:
            previous.close()
        return True

    def _complete(
        self,
        session: TrackingSession,
        trigger: CompletionTrigger,
        details: dict[str, Any],
        *,
        guard: Callable[[], bool] | None = None,
    ) -> CompletionEvent | None:
        with session.lock:
            if not session.open or (guard is not None and not guard()):
                return None
            session.phase = SessionPhase.COMPLETED
            resources = self._detach(session)
            with self._lock:
                if self._sessions.get(session.client_id) is session:
                    del self._sessions[session.client_id]
                self._completions += 1

            event = CompletionEvent(client_id=session.client_id, trigger=trigger, details=details)
            logger.info(
                "Task completion detected",
                extra={"client_id": session.client_id, "trigger": trigger.value, "details": details},
            )
            self._bus.emit(
                EventType.TASK_COMPLETED,
                session.client_id,
                trigger=trigger.value,
                details=details,
            )

        self._release(resources)
        return event

    def _detach(self, session: TrackingSession) -> _Resources:
        if session.timer is not None:
            session.timer.cancel()
            session.timer = None
        session.generation += 1
        resources = _Resources(session.subscription, session.process_watch)
        session.subscription = None
        session.process_watch = None
        return resources

    def _release(self, resources: _Resources) -> None:
        # Closing a watcher joins its thread, so it happens outside the session lock.
        if resources.subscription is not None:
            try:
                resources.subscription.close()
            except Exception:
                logger.exception("Failed to close file watcher")
        if resources.process_watch is not None:
            resources.process_watch.close()

    def stop_tracking(self, client_id: str) -> bool:
        """Close ``client_id``'s session without emitting a completion.

        Safe to call for clients that were never tracked or whose episode
        already completed.
        """

        with self._lock:
            session = self._sessions.pop(client_id, None)
        if session is None:
            return False

        with session.lock:
            if session.open:
                session.phase = SessionPhase.STOPPED
            resources = self._detach(session)
        self._release(resources)
        logger.debug("Task monitoring stopped", extra={"client_id": client_id})
        return True

    stop_task_monitoring = stop_tracking

    def stop_all(self) -> None:
        with self._lock:
            client_ids = list(self._sessions)
        for client_id in client_ids:
            self.stop_tracking(client_id)

    def shutdown(self) -> None:
        self.stop_all()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def tracking_status(self) -> dict[str, Any]:
        with self._lock:
            sessions = list(self._sessions.values())
            completions = self._completions
        return {
            "active_trackers": len(sessions),
            "tracked_clients": [session.client_id for session in sessions],
            "watched_clients": [session.client_id for session in sessions if session.subscription is not None],
            "completions": completions,
        }


__all__ = ["TaskCompletionDetector", "TrackingSession"]

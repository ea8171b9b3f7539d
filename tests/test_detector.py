from __future__ import annotations

import threading

import pytest

from agentify_mcp.clients import ClientEntity, ClientKind, ClientStore
from agentify_mcp.detection import (
    CompletionTrigger,
    SessionPhase,
    TaskCompletionDetector,
    TrackingConfig,
)
from agentify_mcp.events import EventType
from agentify_mcp.scheduling import ThreadingScheduler
from agentify_mcp.watcher import ADDED, CHANGED, REMOVED

from conftest import FakeWatchService


@pytest.fixture
def store(bus):
    store = ClientStore(bus)
    store.register(ClientEntity(id="c1", name="Agent", kind=ClientKind.CODING_ASSISTANT))
    return store


@pytest.fixture
def detector(store, scheduler, executor, watch_service):
    return TaskCompletionDetector(
        store,
        watch_service=watch_service,
        scheduler=scheduler,
        executor=executor,
    )


def _completions(recorded):
    return [event for event in recorded if event.type is EventType.TASK_COMPLETED]


def test_unknown_client_is_not_tracked(detector):
    assert detector.start_tracking("missing") is False
    assert detector.is_tracking("missing") is False


def test_idle_timeout_emits_once(detector, scheduler, recorded):
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100))

    scheduler.advance(0.099)
    assert _completions(recorded) == []

    scheduler.advance(0.002)
    completions = _completions(recorded)
    assert len(completions) == 1
    assert completions[0].payload["trigger"] == "idle_timeout"
    assert completions[0].payload["details"]["timeoutMs"] == 100
    assert detector.is_tracking("c1") is False

    scheduler.advance(10)
    assert len(_completions(recorded)) == 1


def test_activity_resets_idle_timer(detector, scheduler, recorded):
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100))

    for _ in range(5):
        scheduler.advance(0.08)
        assert detector.record_activity("c1", "request") is True

    assert _completions(recorded) == []
    scheduler.advance(0.1)
    assert len(_completions(recorded)) == 1


def test_cancelled_timer_callback_is_discarded(detector, scheduler, recorded):
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100))
    first = scheduler.pending[0]

    detector.record_activity("c1")
    # The superseded timer fires anyway, as a racing threading.Timer could.
    first.callback()
    assert _completions(recorded) == []

    detector.stop_tracking("c1")
    for handle in scheduler.handles:
        handle.callback()
    assert _completions(recorded) == []


def test_manual_completion_closes_session(detector, scheduler, recorded):
    detector.start_tracking("c1")

    event = detector.mark_task_completed("c1", "user said done")

    assert event.trigger is CompletionTrigger.MANUAL
    assert event.details == {"reason": "user said done"}
    assert detector.mark_task_completed("c1") is None
    assert detector.signal_process_exit("c1", 0) is None
    scheduler.advance(60)
    assert len(_completions(recorded)) == 1
    assert detector.tracking_status()["completions"] == 1


def test_process_exit_signal(detector, recorded):
    detector.start_tracking("c1")

    event = detector.signal_process_exit("c1", 2, "make")

    assert event.trigger is CompletionTrigger.PROCESS_COMPLETION
    assert event.details == {"exitCode": 2, "process": "make"}
    assert _completions(recorded)[0].payload["details"]["exitCode"] == 2


def test_file_completion_by_keyword(detector, watch_service, tmp_path, recorded):
    log_file = tmp_path / "build.log"
    log_file.write_text("compiling...\nBuild Successful in 3s\n", encoding="utf-8")
    detector.start_tracking("c1", TrackingConfig(monitor_file_changes=True, watch_paths=[str(tmp_path)]))
    subscription = watch_service.subscriptions[0]

    subscription.fire(CHANGED, str(log_file))

    completions = _completions(recorded)
    assert len(completions) == 1
    assert completions[0].payload["trigger"] == "file_analysis"
    details = completions[0].payload["details"]
    assert details["file"] == str(log_file)
    assert set(details["matchedKeywords"]) == {"build successful", "success"}
    assert subscription.closed is True
    file_events = [event for event in recorded if event.type is EventType.FILE_CHANGED]
    assert file_events[0].payload == {"kind": CHANGED, "path": str(log_file)}


def test_file_without_keywords_returns_to_armed(detector, watch_service, tmp_path, recorded):
    log_file = tmp_path / "run.log"
    log_file.write_text("still working\n", encoding="utf-8")
    detector.start_tracking("c1", TrackingConfig(monitor_file_changes=True))
    subscription = watch_service.subscriptions[0]

    subscription.fire(ADDED, str(log_file))

    assert _completions(recorded) == []
    info = detector.session_info("c1")
    assert info["phase"] == SessionPhase.ARMED.value
    assert info["pending_evaluations"] == 0


def test_non_matching_and_removed_files_only_reset_timer(detector, watch_service, executor, scheduler, tmp_path, recorded):
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100, monitor_file_changes=True))
    subscription = watch_service.subscriptions[0]
    notes = tmp_path / "notes.txt"
    notes.write_text("done", encoding="utf-8")

    scheduler.advance(0.09)
    subscription.fire(CHANGED, str(notes))
    subscription.fire(REMOVED, str(tmp_path / "done.log"))
    scheduler.advance(0.09)

    assert executor.submitted == 0
    assert _completions(recorded) == []
    scheduler.advance(0.02)
    assert len(_completions(recorded)) == 1


def test_unreadable_file_means_no_match(detector, store, tmp_path, recorded):
    detector.start_tracking("c1")

    detector.handle_file_change("c1", ADDED, str(tmp_path / "missing.log"))

    assert _completions(recorded) == []
    assert detector.is_tracking("c1") is True


def test_watcher_failure_keeps_idle_detection(store, scheduler, executor, recorded):
    detector = TaskCompletionDetector(
        store,
        watch_service=FakeWatchService(fail=True),
        scheduler=scheduler,
        executor=executor,
    )

    assert detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=50, monitor_file_changes=True)) is True
    assert detector.tracking_status()["watched_clients"] == []

    scheduler.advance(0.05)
    assert len(_completions(recorded)) == 1


def test_stop_tracking_is_safe_from_any_state(detector, watch_service, scheduler, recorded):
    assert detector.stop_tracking("c1") is False

    detector.start_tracking("c1", TrackingConfig(monitor_file_changes=True))
    assert detector.stop_task_monitoring("c1") is True
    assert watch_service.subscriptions[0].closed is True
    assert scheduler.pending == []

    detector.start_tracking("c1")
    detector.mark_task_completed("c1")
    assert detector.stop_tracking("c1") is False
    assert len(_completions(recorded)) == 1


def test_restart_replaces_open_session(detector, watch_service, scheduler, recorded):
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100, monitor_file_changes=True))
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=200))

    assert watch_service.subscriptions[0].closed is True
    scheduler.advance(0.15)
    assert _completions(recorded) == []
    scheduler.advance(0.06)
    assert len(_completions(recorded)) == 1


def test_tracking_status_lists_sessions(detector, store):
    store.register(ClientEntity(id="c2", name="Other", kind=ClientKind.CUSTOM))
    detector.start_tracking("c1", TrackingConfig(monitor_file_changes=True))
    detector.start_tracking("c2")

    status = detector.tracking_status()

    assert status["active_trackers"] == 2
    assert sorted(status["tracked_clients"]) == ["c1", "c2"]
    assert status["watched_clients"] == ["c1"]

    detector.stop_all()
    assert detector.tracking_status()["active_trackers"] == 0


def test_concurrent_signals_emit_exactly_once(store, bus, recorded):
    detector = TaskCompletionDetector(store, scheduler=ThreadingScheduler())
    try:
        detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=20))
        barrier = threading.Barrier(8)

        def signal(index: int) -> None:
            barrier.wait()
            if index % 2:
                detector.mark_task_completed("c1")
            else:
                detector.signal_process_exit("c1", 0)

        threads = [threading.Thread(target=signal, args=(index,)) for index in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        threading.Event().wait(0.1)
        assert len(_completions(recorded)) == 1
    finally:
        detector.shutdown()


def test_real_timer_fires_after_idle_period(store, recorded):
    detector = TaskCompletionDetector(store, scheduler=ThreadingScheduler())
    fired = threading.Event()
    store.bus.subscribe(lambda event: fired.set(), [EventType.TASK_COMPLETED])
    try:
        detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100))
        assert fired.wait(2.0)
        assert _completions(recorded)[0].payload["trigger"] == "idle_timeout"
    finally:
        detector.shutdown()


def test_any_file_event_touches_last_activity(bus, clock, scheduler, executor, watch_service, tmp_path):
    store = ClientStore(bus, clock=clock)
    store.register(ClientEntity(id="c1", name="Agent", kind=ClientKind.CODING_ASSISTANT))
    detector = TaskCompletionDetector(store, watch_service=watch_service, scheduler=scheduler, executor=executor)
    detector.start_tracking("c1", TrackingConfig(idle_timeout_ms=100, monitor_file_changes=True))
    subscription = watch_service.subscriptions[0]
    registered_at = store.get("c1").last_activity_at

    clock.advance(seconds=5)
    subscription.fire(CHANGED, str(tmp_path / "main.py"))
    changed_at = store.get("c1").last_activity_at
    clock.advance(seconds=5)
    subscription.fire(REMOVED, str(tmp_path / "old.py"))

    assert changed_at > registered_at
    assert store.get("c1").last_activity_at == clock.current
    assert executor.submitted == 0

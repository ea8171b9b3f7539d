from __future__ import annotations

from collections import defaultdict
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone

import pytest

from agentify_mcp.config import AgentifySettings
from agentify_mcp.errors import WatcherFailure
from agentify_mcp.events import EventBus


class ManualHandle:
    def __init__(self, due: float, callback) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by explicit ``advance`` calls instead of wall time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualHandle]:
        return [handle for handle in self.handles if not handle.cancelled and not handle.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = sorted((h for h in self.pending if h.due <= target), key=lambda h: h.due)
            if not due:
                break
            handle = due[0]
            self.now = handle.due
            handle.fired = True
            handle.callback()
        self.now = target


class InlineExecutor(Executor):
    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


class FakeSubscription:
    def __init__(self, paths, ignore_patterns) -> None:
        self.paths = list(paths)
        self.ignore_patterns = list(ignore_patterns)
        self.callbacks: dict[str, list] = defaultdict(list)
        self.closed = False

    def on(self, kind, callback):
        self.callbacks[kind].append(callback)
        return self

    def close(self) -> None:
        self.closed = True

    def fire(self, kind: str, path: str) -> None:
        for callback in list(self.callbacks[kind]):
            callback(path)


class FakeWatchService:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.subscriptions: list[FakeSubscription] = []

    def watch(self, paths, ignore_patterns) -> FakeSubscription:
        if self.fail:
            raise WatcherFailure("watch backend unavailable")
        subscription = FakeSubscription(paths, ignore_patterns)
        self.subscriptions.append(subscription)
        return subscription


class MutableClock:
    def __init__(self) -> None:
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> None:
        self.current += timedelta(**delta)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def watch_service() -> FakeWatchService:
    return FakeWatchService()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded(bus: EventBus) -> list:
    events: list = []
    bus.subscribe(events.append)
    return events


@pytest.fixture
def settings(tmp_path) -> AgentifySettings:
    return AgentifySettings(
        chroma_persist_path=tmp_path / "chroma",
        notification_rule_paths=[tmp_path / "notifications"],
        watch_paths=[str(tmp_path)],
    )

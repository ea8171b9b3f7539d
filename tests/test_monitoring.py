from __future__ import annotations

from contextlib import contextmanager
from types import SimpleNamespace

import psutil
import pytest

from agentify_mcp.clients import ClientEntity, ClientKind, ClientStore
from agentify_mcp.errors import NotFound
from agentify_mcp.events import EventType
from agentify_mcp.monitoring import MetricsSampler, ProcessWatch
from agentify_mcp.scheduling import PeriodicTask


class StubProcess:
    def __init__(self, *, cpu: float = 12.5, rss: int = 50 * 1024 * 1024, fail: bool = False) -> None:
        self.cpu = cpu
        self.rss = rss
        self.fail = fail
        self.exit_code: int | None = None
        self.exited = False

    @contextmanager
    def oneshot(self):
        yield

    def cpu_percent(self, interval=None) -> float:
        if self.fail:
            raise psutil.AccessDenied(pid=1)
        return self.cpu

    def memory_info(self):
        return SimpleNamespace(rss=self.rss)

    def name(self) -> str:
        return "worker"

    def wait(self, timeout=None):
        if not self.exited:
            raise psutil.TimeoutExpired(timeout, pid=1)
        return self.exit_code


@pytest.fixture
def store(bus):
    store = ClientStore(bus)
    store.register(ClientEntity(id="a", name="A", kind=ClientKind.CUSTOM))
    store.register(ClientEntity(id="b", name="B", kind=ClientKind.CUSTOM))
    return store


def test_tick_applies_sample_to_active_clients(store, scheduler, recorded):
    sampler = MetricsSampler(store, scheduler=scheduler, process=StubProcess())

    sample = sampler.tick()

    assert sample.cpu_usage == 12.5
    assert sample.memory_usage == 50.0
    assert store.get("a").metrics.memory_usage == 50.0
    assert store.get("b").metrics.cpu_usage == 12.5
    updates = [event for event in recorded if event.type is EventType.CLIENT_METRICS_UPDATED]
    assert {event.client_id for event in updates} == {"a", "b"}


def test_failed_sample_is_skipped_and_interval_continues(store, scheduler):
    process = StubProcess(fail=True)
    sampler = MetricsSampler(store, interval_seconds=5, scheduler=scheduler, process=process)
    sampler.start()

    scheduler.advance(5)
    assert sampler.failures == 1
    assert sampler.last_sample is None
    assert store.get("a").metrics.cpu_usage is None

    process.fail = False
    scheduler.advance(5)
    assert sampler.last_sample is not None
    assert sampler.running is True

    sampler.stop()
    scheduler.advance(50)
    assert sampler.failures == 1
    assert sampler.running is False


def test_periodic_task_survives_callback_errors(scheduler):
    calls: list[int] = []

    def flaky() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    task = PeriodicTask("flaky", 1.0, flaky, scheduler)
    task.start()
    scheduler.advance(3)

    assert len(calls) == 3
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, flaky, scheduler)


def test_process_watch_reports_exit_once(scheduler):
    process = StubProcess()
    exits: list[tuple] = []
    watch = ProcessWatch(
        4242,
        lambda code, name: exits.append((code, name)),
        scheduler=scheduler,
        poll_interval=1.0,
        process=process,
    ).start()

    scheduler.advance(3)
    assert exits == []

    process.exited = True
    process.exit_code = 3
    scheduler.advance(1)
    scheduler.advance(5)

    assert exits == [(3, "worker")]
    assert watch.name == "worker"


def test_process_watch_close_cancels_polling(scheduler):
    process = StubProcess()
    exits: list[tuple] = []
    watch = ProcessWatch(1, lambda code, name: exits.append((code, name)), scheduler=scheduler, process=process)
    watch.start()
    watch.close()

    process.exited = True
    scheduler.advance(60)

    assert exits == []


def test_process_watch_unknown_pid(monkeypatch, scheduler):
    def missing(pid):
        raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr(psutil, "Process", missing)

    with pytest.raises(NotFound):
        ProcessWatch(999_999, lambda code, name: None, scheduler=scheduler)

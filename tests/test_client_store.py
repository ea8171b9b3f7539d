from __future__ import annotations

import threading

import pytest

from agentify_mcp.clients import (
    ClientContext,
    ClientEntity,
    ClientKind,
    ClientStatus,
    ClientStore,
)
from agentify_mcp.errors import InvalidEntity
from agentify_mcp.events import EventType


def _entity(client_id: str = "c1", kind=ClientKind.CODING_ASSISTANT, name: str = "Agent") -> ClientEntity:
    return ClientEntity(id=client_id, name=name, kind=kind, context=ClientContext(working_directory="/tmp"))


def test_register_initializes_entity_and_publishes(bus, recorded, clock):
    store = ClientStore(bus, clock=clock)

    snapshot = store.register(_entity())

    assert snapshot.status is ClientStatus.CONNECTED
    assert snapshot.connected_at == clock.current
    assert snapshot.last_activity_at == clock.current
    assert snapshot.metrics.request_count == 0
    assert snapshot.metrics.error_count == 0
    assert [event.type for event in recorded] == [EventType.CLIENT_CONNECTED]
    assert recorded[0].payload["client"]["id"] == "c1"
    assert recorded[0].payload["replaced"] is False


@pytest.mark.parametrize(
    "entity",
    [
        ClientEntity(id="", name="Agent", kind=ClientKind.CUSTOM),
        ClientEntity(id="c1", name="", kind=ClientKind.CUSTOM),
        ClientEntity(id="c1", name="Agent", kind=None),
        ClientEntity(id="c1", name="Agent", kind="spaceship"),  # type: ignore[arg-type]
    ],
)
def test_register_rejects_invalid_entities(bus, recorded, entity):
    store = ClientStore(bus)

    with pytest.raises(InvalidEntity):
        store.register(entity)

    assert store.list_all() == []
    assert recorded == []


def test_register_accepts_kind_value_string(bus):
    store = ClientStore(bus)

    snapshot = store.register(ClientEntity(id="c1", name="Agent", kind="custom"))  # type: ignore[arg-type]

    assert snapshot.kind is ClientKind.CUSTOM


def test_register_same_id_replaces_entity(bus, recorded):
    store = ClientStore(bus)
    store.register(_entity(name="First"))
    store.increment_request("c1")

    store.register(_entity(name="Second"))

    assert len(store.list_all()) == 1
    current = store.get("c1")
    assert current.name == "Second"
    assert current.metrics.request_count == 0
    assert recorded[-1].payload["replaced"] is True


def test_get_returns_isolated_snapshot(bus):
    store = ClientStore(bus)
    store.register(_entity())

    snapshot = store.get("c1")
    snapshot.name = "mutated"
    snapshot.context.active_files.append("x.py")

    fresh = store.get("c1")
    assert fresh.name == "Agent"
    assert fresh.context.active_files == []
    assert store.get("missing") is None


def test_unregister_moves_entity_to_history(bus, recorded):
    store = ClientStore(bus, history_limit=2)
    for client_id in ("a", "b", "c"):
        store.register(_entity(client_id))
        removed = store.unregister(client_id)
        assert removed.status is ClientStatus.DISCONNECTED

    assert store.list_active() == []
    assert [entity.id for entity in store.history()] == ["b", "c"]
    assert recorded[-1].type is EventType.CLIENT_DISCONNECTED
    assert store.unregister("unknown") is None


def test_touch_never_moves_activity_backwards(bus, clock):
    store = ClientStore(bus, clock=clock)
    store.register(_entity())
    clock.advance(seconds=10)
    assert store.touch("c1") is True
    later = store.get("c1").last_activity_at

    clock.advance(seconds=-5)
    store.touch("c1")

    assert store.get("c1").last_activity_at == later
    assert store.touch("missing") is False


def test_sweep_inactive_uses_strict_cutoff(bus, clock):
    store = ClientStore(bus, clock=clock)
    store.register(_entity("old"))
    clock.advance(seconds=5)
    store.register(_entity("fresh"))
    clock.advance(seconds=5)

    stale = store.sweep_inactive(10_000)
    assert stale == []

    clock.advance(milliseconds=1)
    stale = store.sweep_inactive(10_000)
    assert [entity.id for entity in stale] == ["old"]


def test_update_context_validates_fields(bus, clock):
    store = ClientStore(bus, clock=clock)
    store.register(_entity())
    clock.advance(seconds=3)

    snapshot = store.update_context("c1", current_task="refactor", active_files=["a.py"])

    assert snapshot.context.current_task == "refactor"
    assert snapshot.context.active_files == ["a.py"]
    assert snapshot.last_activity_at == clock.current
    with pytest.raises(ValueError):
        store.update_context("c1", bogus=True)


def test_counters_and_metrics(bus, recorded):
    store = ClientStore(bus)
    store.register(_entity())

    assert store.increment_request("c1") == 1
    assert store.increment_request("c1") == 2
    assert store.increment_error("c1") == 1
    assert store.increment_request("missing") is None

    store.apply_metrics("c1", cpu_usage=12.5, memory_usage=64.0)

    metrics_event = recorded[-1]
    assert metrics_event.type is EventType.CLIENT_METRICS_UPDATED
    assert metrics_event.payload["metrics"]["request_count"] == 2
    assert metrics_event.payload["metrics"]["cpu_usage"] == 12.5
    current = store.get("c1").metrics
    assert current.memory_usage == 64.0
    assert current.error_count == 1


def test_stats_and_kind_queries(bus):
    store = ClientStore(bus)
    store.register(_entity("a", ClientKind.CODING_ASSISTANT))
    store.register(_entity("b", ClientKind.CODING_ASSISTANT))
    store.register(_entity("c", ClientKind.GENERIC_AGENT))
    store.unregister("c")

    stats = store.stats()

    assert stats["total"] == 2
    assert stats["active"] == 2
    assert stats["by_kind"] == {"coding_assistant": 2}
    assert stats["by_status"] == {"connected": 2}
    assert stats["history"] == 1
    assert [entity.id for entity in store.list_by_kind(ClientKind.CODING_ASSISTANT)] == ["a", "b"]
    assert store.is_active("a") is True
    assert store.is_active("c") is False


def test_concurrent_registration_of_distinct_ids(bus, recorded):
    store = ClientStore(bus)
    barrier = threading.Barrier(20)

    def worker(offset: int) -> None:
        barrier.wait()
        for index in range(5):
            store.register(_entity(f"client-{offset}-{index}"))

    threads = [threading.Thread(target=worker, args=(offset,)) for offset in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store.list_all()) == 100
    connected = [event for event in recorded if event.type is EventType.CLIENT_CONNECTED]
    assert len(connected) == 100
    assert len({event.client_id for event in connected}) == 100


def test_stats_history_is_consistent_during_concurrent_unregister(bus):
    store = ClientStore(bus, history_limit=50)
    for index in range(40):
        store.register(_entity(f"c{index}"))
    sizes: list[int] = []
    barrier = threading.Barrier(5)

    def unregister(offset: int) -> None:
        barrier.wait()
        for index in range(offset, 40, 4):
            store.unregister(f"c{index}")

    def sample() -> None:
        barrier.wait()
        for _ in range(50):
            sizes.append(store.stats()["history"])

    threads = [threading.Thread(target=unregister, args=(offset,)) for offset in range(4)]
    threads.append(threading.Thread(target=sample))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sizes == sorted(sizes)
    assert store.stats()["history"] == len(store.history()) == 40

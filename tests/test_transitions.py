from __future__ import annotations

import itertools

import pytest

from agentify_mcp.clients import (
    TRANSITIONS,
    ClientEntity,
    ClientKind,
    ClientStatus,
    ClientStore,
    StatusStateMachine,
    can_transition,
    require_transition,
)
from agentify_mcp.errors import InvalidTransition
from agentify_mcp.events import EventType


@pytest.fixture
def machine(bus):
    store = ClientStore(bus)
    store.register(ClientEntity(id="c1", name="Agent", kind=ClientKind.GENERIC_AGENT))
    return store, StatusStateMachine(store)


def _force_status(store: ClientStore, status: ClientStatus) -> None:
    def apply(entity):
        entity.status = status

    store.mutate("c1", apply)


def test_table_matches_documented_transitions():
    assert TRANSITIONS[ClientStatus.CONNECTED] == {
        ClientStatus.IDLE,
        ClientStatus.RUNNING,
        ClientStatus.DISCONNECTED,
    }
    assert TRANSITIONS[ClientStatus.RUNNING] == {
        ClientStatus.IDLE,
        ClientStatus.COMPLETED,
        ClientStatus.ERROR,
        ClientStatus.PAUSED,
    }
    assert TRANSITIONS[ClientStatus.DISCONNECTED] == frozenset()
    assert ClientStatus.WAITING_INPUT not in TRANSITIONS
    assert not can_transition(ClientStatus.RUNNING, ClientStatus.DISCONNECTED)


@pytest.mark.parametrize(
    "source,target",
    [pair for pair in itertools.product(ClientStatus, ClientStatus) if pair[0] is not pair[1]],
)
def test_apply_transition_follows_table(machine, recorded, source, target):
    store, state_machine = machine
    _force_status(store, source)
    recorded.clear()

    applied = state_machine.apply_transition("c1", target)

    expected = can_transition(source, target)
    assert applied is expected
    assert store.get("c1").status is (target if expected else source)
    status_events = [event for event in recorded if event.type is EventType.CLIENT_STATUS_CHANGED]
    if expected:
        assert len(status_events) == 1
        assert status_events[0].payload == {"from": source.value, "to": target.value}
    else:
        assert status_events == []


def test_unknown_client_and_status_are_rejected(machine, recorded):
    _store, state_machine = machine
    recorded.clear()

    assert state_machine.apply_transition("missing", ClientStatus.IDLE) is False
    assert state_machine.apply_transition("c1", "sleeping") is False
    assert recorded == []


def test_accepts_status_value_strings(machine):
    store, state_machine = machine

    assert state_machine.apply_transition("c1", "running") is True
    assert store.get("c1").status is ClientStatus.RUNNING


def test_require_transition_raises_for_disallowed_pairs():
    require_transition(ClientStatus.RUNNING, ClientStatus.COMPLETED)

    with pytest.raises(InvalidTransition, match="running to disconnected"):
        require_transition(ClientStatus.RUNNING, ClientStatus.DISCONNECTED)

"""Tests for groupdesigner/query.py -- remote group query and response slots."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from groupdesigner.actors.local import LocalBus, LocalTransport
from groupdesigner.actors.mailbox import Mailbox
from groupdesigner.actors.message import GroupData, QueryGroup
from groupdesigner.errors import DuplicatePeerError, GroupQueryTimeout
from groupdesigner.query import GroupQuery, ResponseSlots
from groupdesigner.simulation import SimulatedWorld


def _answer(character="Bob", members=("Bob", "Carol"), query_id="q1", instance="p1"):
    return GroupData(sender=character, instance=instance, character=character,
                     members=members, query_id=query_id)


# =====================================================================
# ResponseSlots
# =====================================================================
class TestResponseSlots:
    def test_deliver_and_take_once(self):
        slots = ResponseSlots()
        slots.expect("Bob", "q1")
        assert slots.deliver(_answer())
        assert slots.ready("bob")
        answer = slots.take("Bob", "q1")
        assert answer.members == ("Bob", "Carol")
        assert slots.take("Bob", "q1") is None
        assert not slots.ready("Bob")

    def test_unsolicited_answer_dropped(self):
        slots = ResponseSlots()
        assert slots.deliver(_answer()) is False
        assert not slots.ready("Bob")

    def test_stale_answer_cannot_satisfy_new_query(self):
        slots = ResponseSlots()
        slots.expect("Bob", "q1")
        slots.take("Bob", "q1")  # q1 timed out
        slots.expect("Bob", "q2")
        assert slots.deliver(_answer(query_id="q1")) is False
        assert not slots.ready("Bob")

    def test_expect_discards_previous_answer(self):
        slots = ResponseSlots()
        slots.expect("Bob", "q1")
        slots.deliver(_answer(query_id="q1"))
        slots.expect("Bob", "q2")
        assert not slots.ready("Bob")

    def test_take_with_wrong_id(self):
        slots = ResponseSlots()
        slots.expect("Bob", "q2")
        slots.deliver(_answer(query_id="q2"))
        assert slots.take("Bob", "q1") is None
        assert slots.ready("Bob")

    def test_conflicting_instances(self):
        slots = ResponseSlots()
        slots.expect("Bob", "q1")
        slots.deliver(_answer(instance="p1"))
        slots.deliver(_answer(instance="p2"))
        assert slots.take("Bob", "q1").conflicting

    def test_pending(self):
        slots = ResponseSlots()
        slots.expect("Bob", "q1")
        assert slots.pending() == ["bob"]


# =====================================================================
# GroupQuery over a local bus
# =====================================================================
@pytest.fixture
def network():
    bus = LocalBus()
    world = SimulatedWorld()
    for name in ("Alice", "Bob", "Carol"):
        world.add_character(name)
    world.form("Bob", "Carol")

    slots = ResponseSlots()
    master = LocalTransport(bus, "Alice")
    master.start()
    Mailbox(master, world.client("Alice"), master=True, slots=slots).register()

    peer = LocalTransport(bus, "Bob")
    peer.start()
    Mailbox(peer, world.client("Bob")).register()

    query = GroupQuery(master, world.client("Alice"), slots, poll_interval_s=0.01)
    yield query, bus, world
    bus.close()


class TestGroupQuery:
    def test_local_leader_needs_no_transport(self):
        transport = MagicMock()
        transport.identity = "Alice"
        world = SimulatedWorld()
        world.add_character("Alice")
        query = GroupQuery(transport, world.client("Alice"), ResponseSlots())
        assert query.query_group_members("alice") == ["Alice"]
        transport.broadcast.assert_not_called()

    def test_remote_leader(self, network):
        query, _, _ = network
        assert query.query_group_members("Bob", timeout_s=1.0) == ["Bob", "Carol"]

    def test_remote_leader_case_insensitive(self, network):
        query, _, _ = network
        assert query.query_group_members("BOB", timeout_s=1.0) == ["Bob", "Carol"]

    def test_repeated_queries_see_fresh_roster(self, network):
        query, _, world = network
        assert query.query_group_members("Bob", timeout_s=1.0) == ["Bob", "Carol"]
        world.execute("Carol", "/docommand /disband")
        assert query.query_group_members("Bob", timeout_s=1.0) == ["Bob"]

    def test_silent_leader_times_out_after_timeout(self, network):
        query, _, _ = network
        start = time.monotonic()
        with pytest.raises(GroupQueryTimeout) as info:
            query.query_group_members("Ghost", timeout_s=0.2)
        elapsed = time.monotonic() - start
        assert elapsed >= 0.2
        assert elapsed < 2.0
        assert info.value.leader == "Ghost"

    def test_timeout_is_a_timeout_error(self, network):
        query, _, _ = network
        with pytest.raises(TimeoutError):
            query.query_group_members("Ghost", timeout_s=0.05)

    def test_stop_cancels_wait(self, network):
        _, _, world = network
        transport = MagicMock()
        transport.identity = "Alice"
        stop = threading.Event()
        stop.set()
        query = GroupQuery(transport, world.client("Alice"), ResponseSlots(), stop=stop)
        start = time.monotonic()
        with pytest.raises(GroupQueryTimeout):
            query.query_group_members("Bob", timeout_s=5.0)
        assert time.monotonic() - start < 1.0


def test_duplicate_names_rejected():
    slots = ResponseSlots()
    transport = MagicMock()
    transport.identity = "Alice"

    def answer_twice(message):
        assert isinstance(message, QueryGroup)
        slots.deliver(_answer(query_id=message.query_id, instance="p1"))
        slots.deliver(_answer(query_id=message.query_id, instance="p2"))

    transport.broadcast.side_effect = answer_twice
    world = SimulatedWorld()
    world.add_character("Alice")
    query = GroupQuery(transport, world.client("Alice"), slots, poll_interval_s=0.01)
    with pytest.raises(DuplicatePeerError) as info:
        query.query_group_members("Bob", timeout_s=1.0)
    assert info.value.instances == ["p1", "p2"]

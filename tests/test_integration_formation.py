"""End-to-end formation: real nodes on an in-process bus driving a simulated world."""

import io

import pytest
from rich.console import Console

from groupdesigner.actors.local import LocalBus, LocalTransport
from groupdesigner.demo import run_demo
from groupdesigner.formation import FormationSettings
from groupdesigner.models import GroupSpec
from groupdesigner.node import GroupDesignerNode
from groupdesigner.roles import RoleKind
from groupdesigner.simulation import SimulatedWorld

_SETTINGS = dict(delay_ms=10, max_retries=2, join_poll_s=0.02)


@pytest.fixture
def cluster():
    world = SimulatedWorld()
    for name in ("Alice", "Bob", "Carol", "Dave"):
        world.add_character(name)
    bus = LocalBus()
    nodes = {}
    for name in world.names():
        node = GroupDesignerNode(LocalTransport(bus, name), world.client(name),
                                 master=name == "Alice", request_interval_s=0.5)
        node.tick_s = 0.02
        node.init()
        node.start_background()
        nodes[name] = node
    yield world, nodes
    for node in nodes.values():
        node.shutdown()
    bus.close()


def _tanks():
    return GroupSpec.from_dict("Tanks", {"members": [
        {"name": "Alice", "roles": ["Leader", "Main Tank"]},
        {"name": "Bob", "roles": ["Puller"]},
        "Carol",
    ]})


class TestFormGroupOverBus:
    def test_forms_from_scratch(self, cluster):
        world, nodes = cluster
        former = nodes["Alice"].former(FormationSettings(**_SETTINGS))
        result = former.form_group(_tanks())
        assert result.success
        assert result.message == "Group formed successfully"
        assert world.group_of("Alice") == ["Alice", "Bob", "Carol"]
        assert world.roles_of("Alice")[RoleKind.PULLER.code] == "Bob"

    def test_second_run_changes_nothing(self, cluster):
        world, nodes = cluster
        former = nodes["Alice"].former(FormationSettings(**_SETTINGS))
        former.form_group(_tanks())
        before = len(world.commands)
        result = former.form_group(_tanks())
        assert result.success
        assert len(world.commands) == before

    def test_removes_unwanted_member(self, cluster):
        world, nodes = cluster
        world.form("Alice", "Bob", "Dave")
        former = nodes["Alice"].former(FormationSettings(**_SETTINGS))
        result = former.form_group(_tanks())
        assert result.success
        assert "Dave" not in world.group_of("Alice")
        assert world.group_of("Dave") == ["Dave"]

    def test_unresponsive_member_gives_partial(self, cluster):
        world, nodes = cluster
        world.set_responsive("Carol", False)
        former = nodes["Alice"].former(FormationSettings(**_SETTINGS))
        result = former.form_group(_tanks())
        assert result.success
        assert result.partial
        assert result.missing == ["Carol"]
        assert result.message == "Group formed with 2/3 members (missing: Carol)"


class TestDemo:
    def test_demo_forms_raid(self):
        out = io.StringIO()
        results = run_demo(delay_ms=10, console=Console(file=out, width=120))
        by_group = {r.group: r for r in results}
        assert by_group["Tanks"].message == "Group formed successfully"
        damage = by_group["Damage"]
        assert damage.success and damage.partial
        assert damage.missing == ["Hank"]
        assert "formation complete: 2/2 groups successful" in out.getvalue()

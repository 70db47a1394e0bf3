"""
GroupDesigner demo: a full group-set formation on a simulated world.

Eight characters run as separate nodes on an in-process bus. Two of them
start in the wrong groups and one (Hank) never accepts invites, so the run
shows removals, invites, a retry cycle and a partial result::

    groupdesigner demo
    groupdesigner demo --delay 50 --drop-rate 0.1
"""

from __future__ import annotations

import logging
from typing import List, Optional

from rich.console import Console
from rich.rule import Rule

from groupdesigner.actors.local import LocalBus, LocalTransport
from groupdesigner.commands import form_target, lookup, peers_table, results_table, set_tally
from groupdesigner.config import GroupDesignerConfig
from groupdesigner.models import FormationResult, GroupSpec
from groupdesigner.node import GroupDesignerNode
from groupdesigner.simulation import SimulatedWorld

logger = logging.getLogger("GroupDesigner.Demo")

DEMO_ROSTER = [
    ("Alice", "Warrior"),
    ("Bob", "Cleric"),
    ("Carol", "Enchanter"),
    ("Dave", "Rogue"),
    ("Erin", "Shaman"),
    ("Frank", "Wizard"),
    ("Gina", "Ranger"),
    ("Hank", "Bard"),
]


def demo_config(delay_ms: int) -> GroupDesignerConfig:
    config = GroupDesignerConfig(identity="Alice", delay=delay_ms, max_retries=2)
    config.transport["type"] = "local"
    config.groups["Tanks"] = GroupSpec.from_dict(
        "Tanks",
        {"members": [
            {"name": "Alice", "roles": ["Leader", "Main Tank"]},
            {"name": "Bob", "roles": ["Main Assist"]},
            {"name": "Carol", "roles": ["Puller"]},
        ]},
    )
    config.groups["Damage"] = GroupSpec.from_dict(
        "Damage",
        {"members": [
            {"name": "Dave", "roles": ["Leader", "Mark NPC"]},
            "Erin",
            {"name": "Frank", "role": "Master Looter"},
            "Hank",
        ]},
    )
    config.group_sets["Raid"] = ["Tanks", "Damage"]
    return config


def run_demo(
    delay_ms: int = 20,
    drop_rate: float = 0.0,
    console: Optional[Console] = None,
) -> List[FormationResult]:
    """Run the demo and return the per-group results."""
    console = console or Console()
    config = demo_config(delay_ms)

    world = SimulatedWorld()
    for name, char_class in DEMO_ROSTER:
        world.add_character(name, char_class=char_class, responsive=name != "Hank")
    world.form("Bob", "Dave")
    world.form("Alice", "Erin", "Gina")
    world.join_raid("Alice", "Bob", "Dave", "Erin", "Gina")

    console.print(Rule("GroupDesigner demo", style="dim"))
    console.print(f"  Starting groups: {world.group_of('Bob')}  {world.group_of('Alice')}")

    bus = LocalBus(drop_rate=drop_rate, seed=7)
    master = GroupDesignerNode(
        LocalTransport(bus, "Alice"), world.client("Alice"), master=True,
        request_interval_s=1.0,
    )
    peers = [
        GroupDesignerNode(LocalTransport(bus, name), world.client(name))
        for name, _ in DEMO_ROSTER if name != "Alice"
    ]
    for node in [master] + peers:
        node.tick_s = 0.05
        node.init()
        node.start_background()

    results: List[FormationResult] = []
    try:
        master.wait_for_peers(max_wait_s=5.0, grace_s=0.3)
        console.print(peers_table(master.registry.snapshot()))

        settings = config.formation_settings()
        settings.join_poll_s = 0.05
        target = lookup(config, "Raid")
        _, results, _ = form_target(master.former(settings), target)

        console.print(results_table(results))
        console.print(set_tally("Raid", results))
        for leader in ("Alice", "Dave"):
            console.print(f"  {leader}'s group: {', '.join(world.group_of(leader))}")
    finally:
        master.shutdown(stop_peers=True)
        for node in peers:
            node.shutdown()
        bus.close()
    return results

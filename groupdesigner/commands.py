"""
Command implementations behind the ``groupdesigner`` CLI.

Kept free of argparse so the same functions back the CLI, the demo and the
tests. Rendering helpers return rich renderables; callers decide where to
print them.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple, Union

from rich.table import Table

from groupdesigner.actors.local import LocalBus, LocalTransport
from groupdesigner.actors.mqtt_transport import MQTTTransport
from groupdesigner.actors.transport import Transport
from groupdesigner.config import GroupDesignerConfig
from groupdesigner.errors import GroupNotFoundError
from groupdesigner.formation import GroupFormer
from groupdesigner.models import UNKNOWN, FormationResult, GroupSpec, PeerStatus

logger = logging.getLogger("GroupDesigner.Commands")

Target = Union[GroupSpec, Tuple[str, List[GroupSpec]]]


# ---------------------------------------------------------------------------
# Lookup and formation
# ---------------------------------------------------------------------------


def lookup(config: GroupDesignerConfig, name: str) -> Target:
    """Resolve *name* as a group first, then as a group set.

    Returns:
        A :class:`GroupSpec`, or ``(set_name, groups)`` for a group set.

    Raises:
        GroupNotFoundError: Neither a group nor a group set is called *name*.
    """
    group_key = config.find_group_name(name)
    if group_key is not None:
        return config.groups[group_key]
    set_key = config.find_group_set_name(name)
    if set_key is not None:
        return set_key, config.resolve_group_set(set_key)
    raise GroupNotFoundError("Group or group set", name)


def not_found_lines(config: GroupDesignerConfig, name: str) -> List[str]:
    lines = [f"Group or group set '{name}' not found"]
    lines.append("Available groups: " + (", ".join(sorted(config.groups)) or "none"))
    lines.append("Available group sets: " + (", ".join(sorted(config.group_sets)) or "none"))
    return lines


def result_line(result: FormationResult) -> str:
    return f"Group '{result.group}': {result.message}"


def set_tally(set_name: str, results: List[FormationResult]) -> str:
    ok = sum(1 for r in results if r.success)
    return f"Group set '{set_name}' formation complete: {ok}/{len(results)} groups successful"


def form_target(former: GroupFormer, target: Target) -> Tuple[bool, List[FormationResult], List[str]]:
    """Form an already resolved group or group set.

    Returns:
        ``(all_succeeded, results, summary_lines)``.
    """
    if isinstance(target, GroupSpec):
        logger.info("Forming group: %s", target.name)
        result = former.form_group(target)
        return result.success, [result], [result_line(result)]

    set_name, groups = target
    logger.info("Forming group set: %s (%d groups)", set_name, len(groups))
    results = former.form_group_set(groups)
    lines = [result_line(r) for r in results]
    lines.append(set_tally(set_name, results))
    return all(r.success for r in results), results, lines


def form_group_or_set(
    config: GroupDesignerConfig, former: GroupFormer, name: str
) -> Tuple[bool, List[str]]:
    """Look up *name* and form it. Returns ``(ok, summary_lines)``."""
    try:
        target = lookup(config, name)
    except GroupNotFoundError:
        return False, not_found_lines(config, name)
    ok, _, lines = form_target(former, target)
    return ok, lines


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def build_transport(
    config: GroupDesignerConfig, identity: str, bus: Optional[LocalBus] = None
) -> Transport:
    """Create the transport named in ``config.transport['type']``."""
    kind = config.transport.get("type", "mqtt")
    if kind == "local":
        return LocalTransport(bus or LocalBus(), identity)
    if kind == "mqtt":
        return MQTTTransport(identity, config.transport)
    raise ValueError(f"Unknown transport type: {kind}")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def groups_table(config: GroupDesignerConfig) -> Table:
    table = Table(title=f"Groups: {len(config.groups)}", show_header=True)
    table.add_column("Group", style="bold")
    table.add_column("Members")
    table.add_column("Leader", style="cyan")
    for name, group in config.groups.items():
        members = []
        for member in group.members:
            roles = " ".join(sorted(r.abbrev for r in member.roles))
            members.append(f"{member.name} [dim]{roles}[/]" if roles else member.name)
        leader = group.leader.name if group.leader else UNKNOWN
        table.add_row(name, ", ".join(members), leader)
    return table


def group_sets_table(config: GroupDesignerConfig) -> Table:
    table = Table(title=f"Group sets: {len(config.group_sets)}", show_header=True)
    table.add_column("Set", style="bold")
    table.add_column("Groups")
    for name, groups in config.group_sets.items():
        table.add_row(name, ", ".join(groups) or "[dim]empty[/]")
    return table


def peers_table(peers: Dict[str, PeerStatus]) -> Table:
    table = Table(title=f"Peers: {len(peers)}", show_header=True)
    table.add_column("Name", style="bold")
    for header in ("Class", "Level", "AC", "HP", "Mana", "End", "Zone"):
        table.add_column(header)
    for name in sorted(peers, key=str.casefold):
        status = peers[name]
        style = "dim" if status.stale else None
        table.add_row(
            status.name,
            status.display("char_class"),
            status.display("level"),
            status.display("ac"),
            status.display("max_hp"),
            status.display("max_mana"),
            status.display("max_endurance"),
            status.display("zone"),
            style=style,
        )
    return table


def results_table(results: List[FormationResult]) -> Table:
    table = Table(title="Formation results", show_header=True)
    table.add_column("Group", style="bold")
    table.add_column("Status")
    table.add_column("Message")
    for result in results:
        if not result.success:
            status = "[red]failed[/]"
        elif result.partial:
            status = "[yellow]partial[/]"
        else:
            status = "[green]formed[/]"
        table.add_row(result.group, status, result.message)
    return table

"""
Group roles.

Every role except ``NONE`` and ``LEADER`` maps to the numeric code the game
expects in ``/grouproles set <name> <code>``::

    MAIN_TANK     (1)
    MAIN_ASSIST   (2)
    PULLER        (3)
    MARK_NPC      (4)
    MASTER_LOOTER (5)

Configuration files store roles by their display label (``"Main Tank"``);
:func:`parse_role` also accepts enum names and codes.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger("GroupDesigner.Roles")


class RoleKind(Enum):
    """Roles a group member can hold."""

    NONE = ""
    LEADER = "Leader"
    MAIN_TANK = "Main Tank"
    MAIN_ASSIST = "Main Assist"
    PULLER = "Puller"
    MARK_NPC = "Mark NPC"
    MASTER_LOOTER = "Master Looter"

    @property
    def label(self) -> str:
        return self.value

    @property
    def code(self) -> Optional[int]:
        """Wire code for the set-role command, or ``None`` if the role has none."""
        return ROLE_CODES.get(self)

    @property
    def abbrev(self) -> str:
        return _ABBREVIATIONS.get(self, "")


ROLE_CODES: Dict[RoleKind, int] = {
    RoleKind.MAIN_TANK: 1,
    RoleKind.MAIN_ASSIST: 2,
    RoleKind.PULLER: 3,
    RoleKind.MARK_NPC: 4,
    RoleKind.MASTER_LOOTER: 5,
}

# Roles at most one member of a group may hold.
EXCLUSIVE_ROLES: Set[RoleKind] = {
    RoleKind.LEADER,
    RoleKind.MAIN_TANK,
    RoleKind.MAIN_ASSIST,
    RoleKind.PULLER,
    RoleKind.MARK_NPC,
    RoleKind.MASTER_LOOTER,
}

# Order used when presenting roles (matches the editor's context menu).
ROLE_ORDER: List[RoleKind] = [
    RoleKind.LEADER,
    RoleKind.MAIN_TANK,
    RoleKind.MAIN_ASSIST,
    RoleKind.PULLER,
    RoleKind.MARK_NPC,
    RoleKind.MASTER_LOOTER,
]

_ABBREVIATIONS: Dict[RoleKind, str] = {
    RoleKind.LEADER: "L",
    RoleKind.MAIN_TANK: "MT",
    RoleKind.MAIN_ASSIST: "MA",
    RoleKind.PULLER: "P",
    RoleKind.MARK_NPC: "MN",
    RoleKind.MASTER_LOOTER: "ML",
}


def parse_role(value) -> RoleKind:
    """Parse a role from its label, enum name, or numeric code.

    Raises:
        ValueError: If *value* does not name a role.
    """
    if isinstance(value, RoleKind):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        for role, code in ROLE_CODES.items():
            if code == value:
                return role
        raise ValueError(f"Unknown role code: {value}")
    text = str(value or "").strip()
    if not text:
        return RoleKind.NONE
    lowered = text.lower()
    for role in RoleKind:
        if role.value.lower() == lowered or role.name.lower() == lowered.replace(" ", "_"):
            return role
    raise ValueError(f"Unknown role: {value!r}")


def parse_roles(values: Iterable) -> Set[RoleKind]:
    """Parse several roles, dropping ``NONE`` and skipping unknown entries."""
    roles: Set[RoleKind] = set()
    for value in values:
        try:
            role = parse_role(value)
        except ValueError as exc:
            logger.warning("Ignoring role: %s", exc)
            continue
        if role is not RoleKind.NONE:
            roles.add(role)
    return roles


def sorted_roles(roles: Iterable[RoleKind]) -> List[RoleKind]:
    """Return *roles* in presentation order."""
    present = set(roles)
    return [r for r in ROLE_ORDER if r in present]

"""Core data model: peer status snapshots, desired groups, change plans, results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Set

from groupdesigner.roles import EXCLUSIVE_ROLES, RoleKind, parse_role, parse_roles, sorted_roles

#: Wire/persisted marker for a field whose value is not known yet.
UNKNOWN = "---"

_NULL_MARKERS = {"", UNKNOWN, "NULL", "nil"}

# Python attribute -> wire key
_STATUS_WIRE_KEYS: Dict[str, str] = {
    "char_class": "class",
    "level": "level",
    "ac": "ac",
    "max_hp": "maxhp",
    "max_mana": "maxmana",
    "max_endurance": "maxendurance",
    "zone": "zone",
}


def clean_value(value: Any) -> Optional[str]:
    """Return *value* as a string, or ``None`` if it is empty or a null marker."""
    if value is None:
        return None
    text = str(value).strip()
    if text in _NULL_MARKERS:
        return None
    return text


def same_name(a: str, b: str) -> bool:
    """Character names compare case-insensitively everywhere."""
    return a.casefold() == b.casefold()


# ---------------------------------------------------------------------------
# Peer status
# ---------------------------------------------------------------------------


@dataclass
class PeerStatus:
    """Last reported status of one character.

    ``None`` means unknown. ``stale`` is True until a reply with a known
    class has been received.
    """

    name: str
    char_class: Optional[str] = None
    level: Optional[str] = None
    ac: Optional[str] = None
    max_hp: Optional[str] = None
    max_mana: Optional[str] = None
    max_endurance: Optional[str] = None
    zone: Optional[str] = None
    stale: bool = True

    @classmethod
    def stub(cls, name: str) -> PeerStatus:
        return cls(name=name)

    @property
    def is_known(self) -> bool:
        return self.char_class is not None

    def display(self, attr: str) -> str:
        value = getattr(self, attr)
        return UNKNOWN if value is None else value

    def copy(self) -> PeerStatus:
        return replace(self)

    def to_wire(self) -> Dict[str, str]:
        """Serialise with ``"---"`` for unknown fields."""
        data = {"name": self.name}
        for attr, key in _STATUS_WIRE_KEYS.items():
            data[key] = self.display(attr)
        return data

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> PeerStatus:
        """Deserialise a wire/persisted record; ``"---"`` and missing keys become ``None``."""
        kwargs = {attr: clean_value(data.get(key)) for attr, key in _STATUS_WIRE_KEYS.items()}
        status = cls(name=str(data["name"]), **kwargs)
        status.stale = not status.is_known
        return status


# ---------------------------------------------------------------------------
# Desired topology
# ---------------------------------------------------------------------------


@dataclass
class GroupMember:
    """One desired member of a group and the roles they hold."""

    name: str
    roles: Set[RoleKind] = field(default_factory=set)

    def has_role(self, role: RoleKind) -> bool:
        return role in self.roles

    @property
    def role_codes(self) -> List[int]:
        """Wire codes for every coded role held, in presentation order."""
        return [r.code for r in sorted_roles(self.roles) if r.code is not None]

    def to_dict(self) -> dict:
        return {"name": self.name, "roles": [r.label for r in sorted_roles(self.roles)]}

    @classmethod
    def from_dict(cls, d: Any) -> GroupMember:
        """Accept ``"Name"``, ``{"name", "roles": [...]}`` or the legacy ``{"name", "role"}``."""
        if isinstance(d, str):
            return cls(name=d)
        roles_raw = d.get("roles")
        if isinstance(roles_raw, dict):
            # {"Main Tank": true, "Puller": false}
            roles = parse_roles(k for k, held in roles_raw.items() if held)
        elif isinstance(roles_raw, (str, int)):
            roles = parse_roles([roles_raw])
        elif roles_raw:
            roles = parse_roles(roles_raw)
        else:
            roles = set()
        legacy = d.get("role")
        if legacy:
            role = parse_role(legacy)
            if role is not RoleKind.NONE:
                roles.add(role)
        return cls(name=str(d["name"]), roles=roles)


@dataclass
class GroupSpec:
    """A desired group: ordered members with roles."""

    name: str
    members: List[GroupMember] = field(default_factory=list)

    @property
    def leader(self) -> Optional[GroupMember]:
        """First member holding LEADER or MAIN_TANK, else the first member."""
        for member in self.members:
            if RoleKind.LEADER in member.roles or RoleKind.MAIN_TANK in member.roles:
                return member
        return self.members[0] if self.members else None

    @property
    def member_names(self) -> List[str]:
        return [m.name for m in self.members]

    def find(self, name: str) -> Optional[GroupMember]:
        for member in self.members:
            if same_name(member.name, name):
                return member
        return None

    def assign_role(self, name: str, role: RoleKind) -> None:
        """Give *role* to member *name*, taking exclusive roles away from anyone else.

        Raises:
            KeyError: If *name* is not a member of this group.
        """
        target = self.find(name)
        if target is None:
            raise KeyError(f"{name} is not a member of group {self.name}")
        if role is RoleKind.NONE:
            return
        if role in EXCLUSIVE_ROLES:
            for member in self.members:
                if member is not target:
                    member.roles.discard(role)
        target.roles.add(role)

    def remove_role(self, name: str, role: RoleKind) -> None:
        member = self.find(name)
        if member is not None:
            member.roles.discard(role)

    def to_dict(self) -> dict:
        return {"members": [m.to_dict() for m in self.members]}

    @classmethod
    def from_dict(cls, name: str, d: Any) -> GroupSpec:
        """Build a group, applying roles member by member so exclusivity holds."""
        raw_members = d.get("members", []) if isinstance(d, dict) else list(d or [])
        group = cls(name=name)
        for raw in raw_members:
            parsed = GroupMember.from_dict(raw)
            group.members.append(GroupMember(name=parsed.name))
            for role in sorted_roles(parsed.roles):
                group.assign_role(parsed.name, role)
        return group


@dataclass
class GroupSetSpec:
    """A named, ordered list of group names formed together."""

    name: str
    groups: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Derived
# ---------------------------------------------------------------------------


@dataclass
class GroupChangePlan:
    """Minimal membership changes for one leader. Computed fresh, never persisted."""

    to_invite: List[str] = field(default_factory=list)
    to_remove: List[str] = field(default_factory=list)
    already_correct: List[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return len(self.to_invite) + len(self.to_remove)

    @property
    def is_noop(self) -> bool:
        return self.total_changes == 0


@dataclass
class FormationResult:
    """Outcome of forming one group."""

    group: str
    success: bool
    message: str
    missing: List[str] = field(default_factory=list)
    joined: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.success and bool(self.missing)

    def to_dict(self) -> dict:
        return {
            "group": self.group,
            "success": self.success,
            "message": self.message,
            "missing": list(self.missing),
            "joined": list(self.joined),
        }


def names_of(members: Iterable) -> List[str]:
    """Names from a sequence of :class:`GroupMember` or plain strings."""
    return [m.name if isinstance(m, GroupMember) else str(m) for m in members]

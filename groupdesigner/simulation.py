"""
In-memory game world for demos and integration tests.

``SimulatedWorld`` models characters, groups of up to six, raid membership,
pending invites and group roles, and hands out ``SimulatedCharacter`` game
clients that understand the same command strings the dispatcher sends::

    world = SimulatedWorld()
    alice = world.add_character("Alice", char_class="Warrior")
    bob = world.add_character("Bob", char_class="Cleric")
    carol = world.add_character("Carol", responsive=False)   # ignores invites

    alice.execute("/docommand /inv Bob")
    bob.accept_invite()
    world.group_of("Alice")   # ['Alice', 'Bob']
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from groupdesigner.game import GROUP_SLOTS, GameClient
from groupdesigner.models import PeerStatus, same_name

logger = logging.getLogger("GroupDesigner.Simulation")

_PREFIX = "/docommand "


@dataclass
class _Character:
    name: str
    char_class: str = "Warrior"
    level: int = 60
    ac: int = 1000
    max_hp: int = 5000
    max_mana: int = 0
    max_endurance: int = 2000
    zone: str = "Plane of Knowledge"
    responsive: bool = True
    in_game: bool = True


class SimulatedWorld:
    """Shared state of every simulated character. Thread-safe."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._chars: Dict[str, _Character] = {}
        self._groups: List[List[str]] = []  # leader first
        self._roles: Dict[str, Dict[int, str]] = {}  # leader key -> code -> member
        self._raid: set = set()
        self._invites: Dict[str, str] = {}  # invitee key -> inviter name
        self.commands: List[Tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def add_character(self, name: str, **attrs) -> SimulatedCharacter:
        with self._lock:
            self._chars[name.casefold()] = _Character(name=name, **attrs)
        return SimulatedCharacter(self, name)

    def client(self, name: str) -> SimulatedCharacter:
        if self._char(name) is None:
            raise KeyError(name)
        return SimulatedCharacter(self, name)

    def set_responsive(self, name: str, responsive: bool) -> None:
        with self._lock:
            self._char(name).responsive = responsive

    def set_in_game(self, name: str, in_game: bool) -> None:
        with self._lock:
            self._char(name).in_game = in_game

    def form(self, *names: str) -> None:
        """Put *names* into one group immediately (first name leads)."""
        with self._lock:
            for name in names:
                self._leave_group(name)
            self._groups.append([self._char(n).name for n in names])

    def join_raid(self, *names: str) -> None:
        with self._lock:
            self._raid.update(n.casefold() for n in names)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def names(self) -> List[str]:
        with self._lock:
            return [c.name for c in self._chars.values()]

    def _char(self, name: str) -> Optional[_Character]:
        return self._chars.get(name.casefold())

    def _group_index(self, name: str) -> Optional[int]:
        for i, group in enumerate(self._groups):
            if any(same_name(m, name) for m in group):
                return i
        return None

    def group_of(self, name: str) -> List[str]:
        """Roster as seen by *name*: its group, or just itself when solo."""
        with self._lock:
            index = self._group_index(name)
            if index is None:
                char = self._char(name)
                return [char.name] if char is not None else []
            return list(self._groups[index])

    def leader_of(self, name: str) -> Optional[str]:
        with self._lock:
            index = self._group_index(name)
            return self._groups[index][0] if index is not None else None

    def roles_of(self, leader: str) -> Dict[int, str]:
        with self._lock:
            return dict(self._roles.get(leader.casefold(), {}))

    def in_raid(self, name: str) -> bool:
        with self._lock:
            return name.casefold() in self._raid

    def pending_invite(self, name: str) -> Optional[str]:
        with self._lock:
            return self._invites.get(name.casefold())

    def status(self, name: str) -> Optional[PeerStatus]:
        with self._lock:
            char = self._char(name)
            if char is None or not char.in_game:
                return None
            return PeerStatus(
                name=char.name,
                char_class=char.char_class,
                level=str(char.level),
                ac=str(char.ac),
                max_hp=str(char.max_hp),
                max_mana=str(char.max_mana),
                max_endurance=str(char.max_endurance),
                zone=char.zone,
                stale=False,
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _leave_group(self, name: str) -> None:
        index = self._group_index(name)
        if index is None:
            return
        group = self._groups[index]
        old_leader = group[0]
        group[:] = [m for m in group if not same_name(m, name)]
        roles = self._roles.pop(old_leader.casefold(), {})
        roles = {code: m for code, m in roles.items() if not same_name(m, name)}
        if len(group) <= 1:
            del self._groups[index]
            return
        if roles:
            self._roles[group[0].casefold()] = roles

    def execute(self, actor: str, command: str) -> None:
        """Run a command string as *actor*."""
        with self._lock:
            self.commands.append((actor, command))
            if not command.startswith(_PREFIX):
                logger.debug("%s: ignoring command %r", actor, command)
                return
            parts = command[len(_PREFIX):].split()
            if not parts:
                return
            verb, args = parts[0].lower(), parts[1:]
            if verb == "/raiddisband":
                self._raid.discard(actor.casefold())
            elif verb == "/disband":
                self._leave_group(actor)
                self._invites.pop(actor.casefold(), None)
            elif verb == "/inv" and args:
                self._invite(actor, args[0])
            elif verb == "/grouproles" and len(args) >= 3 and args[0].lower() == "set":
                self._set_role(actor, args[1], args[2])
            else:
                logger.debug("%s: unknown command %r", actor, command)

    def _invite(self, inviter: str, invitee: str) -> None:
        source = self._char(inviter)
        target = self._char(invitee)
        if source is None or target is None:
            logger.debug("%s invited %s, unknown character", inviter, invitee)
            return
        index = self._group_index(inviter)
        if index is not None:
            group = self._groups[index]
            if not same_name(group[0], inviter) or len(group) >= GROUP_SLOTS:
                return
        if self._group_index(invitee) is not None:
            logger.debug("%s is already grouped, invite from %s ignored", invitee, inviter)
            return
        self._invites[target.name.casefold()] = source.name

    def accept(self, name: str) -> bool:
        with self._lock:
            char = self._char(name)
            inviter = self._invites.get(name.casefold())
            if char is None or inviter is None or not char.responsive:
                return False
            del self._invites[name.casefold()]
            if self._group_index(name) is not None:
                return False
            index = self._group_index(inviter)
            if index is None:
                self._groups.append([inviter, char.name])
                return True
            group = self._groups[index]
            if len(group) >= GROUP_SLOTS or not same_name(group[0], inviter):
                return False
            group.append(char.name)
            return True

    def _set_role(self, leader: str, member: str, code: str) -> None:
        index = self._group_index(leader)
        if index is None or not same_name(self._groups[index][0], leader):
            return
        group = self._groups[index]
        if not any(same_name(m, member) for m in group):
            return
        try:
            value = int(code)
        except ValueError:
            return
        roles = self._roles.setdefault(group[0].casefold(), {})
        roles[value] = next(m for m in group if same_name(m, member))


class SimulatedCharacter(GameClient):
    """:class:`GameClient` view of one character in a :class:`SimulatedWorld`."""

    def __init__(self, world: SimulatedWorld, name: str):
        self.world = world
        self._name = name

    @property
    def name(self) -> Optional[str]:
        status = self.world.status(self._name)
        return status.name if status is not None else None

    def character_status(self) -> Optional[PeerStatus]:
        return self.world.status(self._name)

    def group_roster(self) -> List[Optional[str]]:
        roster: List[Optional[str]] = list(self.world.group_of(self._name))
        return roster + [None] * (GROUP_SLOTS - len(roster))

    def execute(self, command: str) -> None:
        self.world.execute(self._name, command)

    def pending_inviter(self) -> Optional[str]:
        return self.world.pending_invite(self._name)

    def accept_invite(self) -> bool:
        return self.world.accept(self._name)

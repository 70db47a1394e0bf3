"""Command dispatcher: run a game command as a named character.

The local character executes directly; anyone else gets the command relayed
through the transport. Every orchestrator step goes through here, so
formation logic never cares where the leader or a member is running.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from groupdesigner.actors.transport import Transport
from groupdesigner.game import GameClient
from groupdesigner.models import same_name

logger = logging.getLogger("GroupDesigner.Dispatch")

RAID_DISBAND = "/docommand /raiddisband"
DISBAND = "/docommand /disband"


def invite_command(member: str) -> str:
    return f"/docommand /inv {member}"


def set_role_command(member: str, code: int) -> str:
    return f"/docommand /grouproles set {member} {code}"


class CommandDispatcher:
    """Route command strings to characters.

    Args:
        identity:  Local character name.
        game:      Local game client.
        transport: Transport used to relay commands to other characters.
        history:   Keep a ``(character, command)`` log of everything sent.
    """

    def __init__(
        self,
        identity: str,
        game: GameClient,
        transport: Optional[Transport] = None,
        history: bool = True,
    ) -> None:
        self.identity = identity
        self._game = game
        self._transport = transport
        self._history: Optional[List[Tuple[str, str]]] = [] if history else None

    @property
    def history(self) -> List[Tuple[str, str]]:
        return list(self._history or [])

    def send_command_to_character(self, name: str, command: str) -> None:
        """Execute *command* as *name*, locally or via the transport."""
        if self._history is not None:
            self._history.append((name, command))
        if same_name(name, self.identity):
            logger.debug("Local command: %s", command)
            self._game.execute(command)
            return
        if self._transport is None:
            logger.error("No transport to relay %r to %s", command, name)
            return
        logger.debug("Relay to %s: %s", name, command)
        self._transport.relay_command(name, command)

    # ------------------------------------------------------------------
    # Game commands
    # ------------------------------------------------------------------

    def raid_disband(self, name: str) -> None:
        self.send_command_to_character(name, RAID_DISBAND)

    def disband(self, name: str) -> None:
        self.send_command_to_character(name, DISBAND)

    def invite(self, leader: str, member: str) -> None:
        self.send_command_to_character(leader, invite_command(member))

    def set_role(self, leader: str, member: str, code: int) -> None:
        self.send_command_to_character(leader, set_role_command(member, code))

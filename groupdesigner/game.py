"""GameClient: the seam between GroupDesigner and a running game client.

The live client integration is an external collaborator. GroupDesigner only
needs a handful of reads and an imperative command primitive; anything that
implements this interface can be coordinated (see
:mod:`groupdesigner.simulation` for an in-memory implementation).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from groupdesigner.models import PeerStatus, clean_value

logger = logging.getLogger("GroupDesigner.Game")

#: A group holds at most this many members (slots 0..5).
GROUP_SLOTS = 6


class GameClient(ABC):
    """Abstract view of one logged-in character."""

    @property
    @abstractmethod
    def name(self) -> Optional[str]:
        """The character's name, or ``None`` while not in game."""

    @abstractmethod
    def character_status(self) -> Optional[PeerStatus]:
        """Current status snapshot, or ``None`` if nothing can be read."""

    @abstractmethod
    def group_roster(self) -> List[Optional[str]]:
        """Raw group member slots (up to six; empty slots may be ``None`` or ``""``)."""

    @abstractmethod
    def execute(self, command: str) -> None:
        """Run an opaque command string in this client."""

    def pending_inviter(self) -> Optional[str]:
        """Name of the character with an outstanding group invite, if any."""
        return None

    def accept_invite(self) -> bool:
        """Accept the outstanding group invite. Returns True if one was accepted."""
        return False

    def current_group(self) -> List[str]:
        """Roster with empty slots removed, capped at :data:`GROUP_SLOTS`."""
        names = []
        for slot in self.group_roster()[:GROUP_SLOTS]:
            value = clean_value(slot)
            if value is not None:
                names.append(value)
        return names

    def status_or_stub(self, fallback_name: Optional[str] = None) -> PeerStatus:
        """:meth:`character_status`, falling back to an all-unknown stub."""
        status = self.character_status()
        if status is None:
            return PeerStatus.stub(self.name or fallback_name or "Unknown")
        return status


class DetachedClient(GameClient):
    """A coordinator with no game attached.

    Used when the master only relays commands to peers: it has no status,
    is never grouped, and logs (rather than runs) anything addressed to it.
    """

    def __init__(self, name: str):
        self._name = name

    @property
    def name(self) -> Optional[str]:
        return self._name

    def character_status(self) -> Optional[PeerStatus]:
        return None

    def group_roster(self) -> List[Optional[str]]:
        return []

    def execute(self, command: str) -> None:
        logger.warning("%s has no game attached, dropped command: %s", self._name, command)

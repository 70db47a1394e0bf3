"""Remote group query: fetch a leader's live roster.

If the leader is this process's own character the roster is read directly
from the game client. Otherwise a ``query_group`` is broadcast and the
caller polls a response slot keyed by the leader's name until the
``group_data`` answer lands or the timeout elapses.

Slots are consumed exactly once. Each query carries a fresh ``query_id``
which the responder echoes back, so an answer that arrives after its query
timed out can never satisfy a later query for the same leader.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from groupdesigner.actors.message import GroupData, QueryGroup
from groupdesigner.actors.transport import Transport
from groupdesigner.errors import DuplicatePeerError, GroupQueryTimeout
from groupdesigner.game import GameClient
from groupdesigner.models import same_name
from groupdesigner.waiting import wait_until

logger = logging.getLogger("GroupDesigner.Query")

DEFAULT_POLL_INTERVAL_S = 0.1
DEFAULT_TIMEOUT_S = 2.0


@dataclass
class _Answer:
    character: str
    members: Tuple[str, ...]
    instances: Set[str] = field(default_factory=set)

    @property
    def conflicting(self) -> bool:
        return len(self.instances) > 1


class ResponseSlots:
    """Per-leader response slots shared by the mailbox thread and the query caller."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._expected: Dict[str, str] = {}  # leader -> outstanding query_id
        self._answers: Dict[str, _Answer] = {}

    def expect(self, leader: str, query_id: str) -> None:
        """Open a slot for a new query, discarding anything left from earlier ones."""
        key = leader.casefold()
        with self._lock:
            self._expected[key] = query_id
            self._answers.pop(key, None)

    def deliver(self, message: GroupData) -> bool:
        """Store an inbound answer. Returns False if nobody is waiting for it."""
        key = message.character.casefold()
        with self._lock:
            expected = self._expected.get(key)
            if expected is None:
                logger.debug("Unsolicited group data from %s dropped", message.character)
                return False
            if message.query_id and message.query_id != expected:
                logger.debug("Stale group data from %s dropped (query %s)",
                             message.character, message.query_id)
                return False
            answer = self._answers.get(key)
            if answer is None:
                answer = _Answer(character=message.character, members=message.members)
                self._answers[key] = answer
            if message.instance:
                answer.instances.add(message.instance)
        return True

    def ready(self, leader: str) -> bool:
        with self._lock:
            return leader.casefold() in self._answers

    def take(self, leader: str, query_id: str) -> Optional[_Answer]:
        """Consume the answer for *query_id*, closing the slot either way."""
        key = leader.casefold()
        with self._lock:
            if self._expected.get(key) != query_id:
                return None
            del self._expected[key]
            return self._answers.pop(key, None)

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._expected)


class GroupQuery:
    """Query group rosters, locally or over the mailbox transport.

    Args:
        transport:       Transport used to broadcast ``query_group``.
        game:            Local game client (roster reads for the local leader).
        slots:           Response slots fed by the mailbox.
        stop:            Process stop flag; aborts an in-flight wait.
        poll_interval_s: Slot polling interval.
    """

    def __init__(
        self,
        transport: Transport,
        game: GameClient,
        slots: ResponseSlots,
        stop: Optional[threading.Event] = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        self._transport = transport
        self._game = game
        self._slots = slots
        self._stop = stop
        self._poll = poll_interval_s

    @property
    def identity(self) -> str:
        return self._transport.identity

    def is_local(self, name: str) -> bool:
        return same_name(name, self.identity)

    def query_group_members(self, leader: str, timeout_s: float = DEFAULT_TIMEOUT_S) -> List[str]:
        """Return the names currently in *leader*'s group.

        Raises:
            GroupQueryTimeout: No answer within *timeout_s* (or the wait was
                cancelled).
            DuplicatePeerError: Two processes answered as *leader*.
        """
        if self.is_local(leader):
            members = self._game.current_group()
            logger.debug("Local group query found %d members", len(members))
            return members

        query_id = uuid.uuid4().hex
        self._slots.expect(leader, query_id)
        logger.debug("Sending query_group for %s (%s)", leader, query_id)
        self._transport.broadcast(
            QueryGroup(
                sender=self.identity,
                instance=self._transport.instance,
                target=leader,
                query_id=query_id,
            )
        )

        wait_until(lambda: self._slots.ready(leader), self._poll, timeout_s, self._stop)
        answer = self._slots.take(leader, query_id)
        if answer is None:
            logger.warning("Timeout waiting for group data from %s", leader)
            raise GroupQueryTimeout(leader, timeout_s)
        if answer.conflicting:
            logger.error("Group query for %s answered by %d processes", leader,
                         len(answer.instances))
            raise DuplicatePeerError(leader, sorted(answer.instances))

        logger.debug("Got %d group members from %s", len(answer.members), leader)
        return list(answer.members)

"""
Mailbox: the per-process message handler.

Runs the same code on the master and on every peer; the ``master`` flag
decides which side of each exchange the process plays:

    request_data  peer replies peer_data to the sender (master ignores it)
    query_group   the process named by ``target`` replies group_data
    peer_data     master upserts the peer registry
    group_data    master fills the response slot for a pending query
    shutdown      sets the process stop flag

A broadcast also reaches its sender, so self-originated ``request_data`` and
``query_group`` messages are discarded.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Callable, Dict, Optional

from groupdesigner.actors.message import (
    GroupData,
    Message,
    MessageKind,
    PeerData,
    QueryGroup,
    RequestData,
    Shutdown,
)
from groupdesigner.actors.transport import Transport
from groupdesigner.errors import TransportUnavailable
from groupdesigner.game import GameClient
from groupdesigner.models import same_name
from groupdesigner.query import ResponseSlots
from groupdesigner.registry import PeerRegistry

logger = logging.getLogger("GroupDesigner.Actors.Mailbox")


class Mailbox:
    """Inbound message handler bound to one transport.

    Args:
        transport: Connected transport for this process.
        game:      Local game client (status and roster reads).
        master:    True on the coordinating process.
        registry:  Peer registry to update (master only).
        slots:     Response slots for pending group queries (master only).
        stop:      Process stop flag, set on ``shutdown``.
    """

    def __init__(
        self,
        transport: Transport,
        game: GameClient,
        *,
        master: bool = False,
        registry: Optional[PeerRegistry] = None,
        slots: Optional[ResponseSlots] = None,
        stop: Optional[threading.Event] = None,
    ) -> None:
        self.transport = transport
        self.game = game
        self.master = master
        self.registry = registry
        self.slots = slots
        self.stop = stop or threading.Event()
        self.received: Counter = Counter()
        self._registered = False
        self._handlers: Dict[MessageKind, Callable[[Message], None]] = {
            MessageKind.REQUEST_DATA: self._on_request_data,
            MessageKind.PEER_DATA: self._on_peer_data,
            MessageKind.QUERY_GROUP: self._on_query_group,
            MessageKind.GROUP_DATA: self._on_group_data,
            MessageKind.SHUTDOWN: self._on_shutdown,
        }

    @property
    def identity(self) -> str:
        return self.transport.identity

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self) -> None:
        """Register with the transport.

        Raises:
            TransportUnavailable: Registration failed; the process must not
                enter its run loop.
        """
        try:
            self.transport.register_handler(self.handle)
        except TransportUnavailable as exc:
            logger.error("Failed to register mailbox for %s: %s", self.identity, exc)
            raise
        self.transport.register_command_executor(self.game.execute)
        self._registered = True
        logger.debug("Mailbox registered for %s (%s)", self.identity,
                     "master" if self.master else "peer")

    def unregister(self) -> None:
        if self._registered:
            self.transport.unregister_handler()
            self._registered = False

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, message: Message) -> None:
        """Entry point called by the transport's delivery thread."""
        self.received[message.kind] += 1
        logger.debug("%s: received %s from %s", self.identity, message.kind.value, message.sender)
        self._handlers[message.kind](message)

    def _from_self(self, message: Message) -> bool:
        return same_name(message.sender, self.identity)

    def _on_request_data(self, message: RequestData) -> None:
        if self.master or self._from_self(message):
            return
        status = self.game.status_or_stub(self.identity)
        self.transport.send(
            message.sender,
            PeerData(sender=self.identity, instance=self.transport.instance, status=status),
        )

    def _on_peer_data(self, message: PeerData) -> None:
        if not self.master or self.registry is None:
            return
        self.registry.upsert(message.status, instance=message.instance)

    def _on_query_group(self, message: QueryGroup) -> None:
        if self._from_self(message):
            return
        if not same_name(message.target, self.identity):
            return
        members = tuple(self.game.current_group())
        logger.debug("%s: answering group query with %d members", self.identity, len(members))
        self.transport.send(
            message.sender,
            GroupData(
                sender=self.identity,
                instance=self.transport.instance,
                character=self.identity,
                members=members,
                query_id=message.query_id,
            ),
        )

    def _on_group_data(self, message: GroupData) -> None:
        if self.slots is not None:
            self.slots.deliver(message)

    def _on_shutdown(self, message: Shutdown) -> None:
        logger.info("%s: shutdown requested by %s", self.identity, message.sender)
        self.stop.set()

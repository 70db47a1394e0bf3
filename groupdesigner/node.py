"""
GroupDesigner process node.

Wires one process's state together (transport, mailbox, response slots,
peer registry, group query, command dispatcher) and runs the background
loop. The same class serves the master (coordinator, owns the registry)
and every peer::

    node = GroupDesignerNode(transport, game, master=True)
    node.init()
    node.start_background()
    node.wait_for_peers()
    result = node.former(settings).form_group(group)
    node.shutdown(stop_peers=True)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from groupdesigner.actors.mailbox import Mailbox
from groupdesigner.actors.message import RequestData, Shutdown
from groupdesigner.actors.transport import Transport
from groupdesigner.dispatch import CommandDispatcher
from groupdesigner.errors import TransportUnavailable
from groupdesigner.formation import FormationSettings, GroupFormer
from groupdesigner.game import GameClient
from groupdesigner.models import same_name
from groupdesigner.query import DEFAULT_POLL_INTERVAL_S, GroupQuery, ResponseSlots
from groupdesigner.registry import PeerRegistry
from groupdesigner.waiting import pause, wait_until

logger = logging.getLogger("GroupDesigner.Node")

MASTER_TICK_S = 0.1
PEER_TICK_S = 0.5


class GroupDesignerNode:
    """One GroupDesigner process.

    Args:
        transport:          Mailbox transport bound to this character.
        game:               Local game client.
        master:             Coordinate peers and own the registry.
        registry:           Peer registry (created on the master if omitted).
        stop:               Process stop flag.
        request_interval_s: Seconds between ``request_data`` broadcasts.
        report_interval_s:  Seconds between peer-count log lines.
        auto_accept:        Accept pending group invites on every tick.
        persist:            Master writes the registry file on each report.
    """

    def __init__(
        self,
        transport: Transport,
        game: GameClient,
        *,
        master: bool = False,
        registry: Optional[PeerRegistry] = None,
        stop: Optional[threading.Event] = None,
        request_interval_s: float = 10.0,
        report_interval_s: float = 15.0,
        auto_accept: bool = True,
        persist: bool = False,
        query_poll_s: float = DEFAULT_POLL_INTERVAL_S,
    ) -> None:
        self.transport = transport
        self.game = game
        self.master = master
        self.stop = stop or threading.Event()
        self.registry = registry if registry is not None else (PeerRegistry() if master else None)
        self.request_interval_s = request_interval_s
        self.report_interval_s = report_interval_s
        self.auto_accept = auto_accept
        self.persist = persist
        self.tick_s = MASTER_TICK_S if master else PEER_TICK_S

        self.slots = ResponseSlots()
        self.mailbox = Mailbox(
            transport,
            game,
            master=master,
            registry=self.registry,
            slots=self.slots,
            stop=self.stop,
        )
        self.query = GroupQuery(transport, game, self.slots, stop=self.stop,
                                poll_interval_s=query_poll_s)
        self.dispatcher = CommandDispatcher(transport.identity, game, transport)

        self._initialized = False
        self._shut_down = False
        self._thread: Optional[threading.Thread] = None
        self._last_request = 0.0
        self._last_report = 0.0

    @property
    def identity(self) -> str:
        return self.transport.identity

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Start the transport and register the mailbox.

        Raises:
            TransportUnavailable: The process must not enter its run loop.
        """
        if self._initialized:
            return
        try:
            self.transport.start()
        except TransportUnavailable as exc:
            logger.error("Transport unavailable for %s: %s", self.identity, exc)
            raise
        try:
            self.mailbox.register()
        except TransportUnavailable:
            self.transport.stop()
            raise

        self._initialized = True
        now = time.monotonic()
        self._last_report = now
        if self.master:
            self.registry.add_self(self.game.status_or_stub(self.identity))
            self.request_peer_data()
        logger.info("GroupDesigner %s started as %s on %s transport", self.identity,
                    "master" if self.master else "peer", self.transport.name)

    def shutdown(self, stop_peers: bool = False) -> None:
        """Stop the loop and tear down the transport. Safe to call twice."""
        if self._shut_down:
            return
        self._shut_down = True
        if stop_peers and self.transport.started:
            self.transport.broadcast(Shutdown(sender=self.identity, instance=self.transport.instance))
            logger.info("Sent shutdown to all peers")
        self.stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)
        if self.master and self.persist and self.registry is not None:
            self._save_registry()
        self.mailbox.unregister()
        self.transport.stop()
        self._initialized = False
        logger.info("GroupDesigner %s stopped", self.identity)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def request_peer_data(self) -> None:
        """Broadcast ``request_data`` now, resetting the periodic timer."""
        self.transport.broadcast(RequestData(sender=self.identity, instance=self.transport.instance))
        self._last_request = time.monotonic()
        logger.debug("Requested peer data")

    def tick(self) -> None:
        """One loop iteration."""
        if self.auto_accept:
            self._accept_invite()
        if not self.master:
            return
        now = time.monotonic()
        if now - self._last_request >= self.request_interval_s:
            self.request_peer_data()
        self.registry.discover(self.transport.reachable_peers())
        if now - self._last_report >= self.report_interval_s:
            self._last_report = now
            logger.info("Tracking %d peers", len(self.registry))
            if self.persist:
                self._save_registry()

    def run(self) -> None:
        """Tick until the stop flag is set."""
        if not self._initialized:
            raise RuntimeError("GroupDesignerNode.init() must be called before run()")
        while not self.stop.is_set():
            try:
                self.tick()
            except Exception as exc:
                logger.error("Node tick failed: %s", exc)
            self.stop.wait(self.tick_s)

    def start_background(self) -> threading.Thread:
        """Run the loop on a daemon thread."""
        self._thread = threading.Thread(target=self.run, daemon=True,
                                        name=f"groupdesigner-{self.identity}")
        self._thread.start()
        return self._thread

    def _accept_invite(self) -> None:
        inviter = self.game.pending_inviter()
        if inviter and self.game.accept_invite():
            logger.info("%s accepted group invite from %s", self.identity, inviter)

    def _save_registry(self) -> None:
        try:
            self.registry.save()
        except OSError as exc:
            logger.warning("Could not write peer registry: %s", exc)

    # ------------------------------------------------------------------
    # Helpers for the orchestrating side
    # ------------------------------------------------------------------

    def remote_peers(self) -> list:
        if self.registry is not None:
            names = self.registry.names()
        else:
            names = self.transport.reachable_peers()
        return [n for n in names if not same_name(n, self.identity)]

    def wait_for_peers(self, max_wait_s: float = 10.0, grace_s: float = 2.0) -> bool:
        """Wait until at least one remote peer is known, then a short grace period.

        Returns False if nobody showed up within *max_wait_s*.
        """
        logger.info("Waiting for peers to connect...")
        found = wait_until(lambda: bool(self.remote_peers()), 0.1, max_wait_s, self.stop)
        if not found:
            logger.warning("No peers found after %.0fs", max_wait_s)
            return False
        logger.info("Found %d peers, waiting %.0fs for more...", len(self.remote_peers()), grace_s)
        pause(grace_s, self.stop)
        return True

    def former(self, settings: Optional[FormationSettings] = None) -> GroupFormer:
        """A :class:`GroupFormer` wired to this node's query and dispatcher."""
        return GroupFormer(self.query, self.dispatcher, settings, stop=self.stop)

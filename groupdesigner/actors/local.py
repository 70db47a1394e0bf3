"""
In-process message bus.

Every :class:`LocalTransport` attached to the same :class:`LocalBus` can
reach the others. Delivery happens on one background worker thread, so
handlers run out-of-band exactly as they would over a network. Optional
loss and latency make the bus useful for exercising retry paths::

    bus = LocalBus(drop_rate=0.1, latency_s=0.02)
    master = LocalTransport(bus, "Alice")
    peer = LocalTransport(bus, "Bob")
"""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from typing import Dict, List, Optional, Tuple

from groupdesigner.actors.message import Message
from groupdesigner.actors.transport import BROADCAST, Transport
from groupdesigner.errors import TransportUnavailable
from groupdesigner.waiting import wait_until

logger = logging.getLogger("GroupDesigner.Actors.LocalBus")

_Item = Tuple[str, str, object]  # (kind, target, message-or-command)


class LocalBus:
    """Shared delivery hub for in-process transports.

    Args:
        drop_rate: Probability in ``[0, 1]`` that any single delivery is lost.
        latency_s: Delay applied before each delivery.
        seed:      Seed for the loss RNG (deterministic tests).
    """

    def __init__(self, drop_rate: float = 0.0, latency_s: float = 0.0,
                 seed: Optional[int] = None):
        self.drop_rate = drop_rate
        self.latency_s = latency_s
        self._rng = random.Random(seed)
        self._lock = threading.RLock()
        self._endpoints: Dict[str, LocalTransport] = {}
        self._queue: "queue.Queue[Optional[_Item]]" = queue.Queue()
        self._pending = 0
        self._thread: Optional[threading.Thread] = None
        self.delivered = 0
        self.dropped = 0

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def attach(self, transport: LocalTransport) -> None:
        key = transport.identity.casefold()
        with self._lock:
            existing = self._endpoints.get(key)
            if existing is not None and existing is not transport:
                raise TransportUnavailable(
                    f"identity {transport.identity} is already attached to this bus"
                )
            self._endpoints[key] = transport
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._worker, daemon=True, name="local-bus"
                )
                self._thread.start()

    def detach(self, transport: LocalTransport) -> None:
        with self._lock:
            key = transport.identity.casefold()
            if self._endpoints.get(key) is transport:
                del self._endpoints[key]

    def peers(self) -> List[str]:
        with self._lock:
            return [t.identity for t in self._endpoints.values()]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def post(self, kind: str, target: str, item: object) -> None:
        with self._lock:
            self._pending += 1
        self._queue.put((kind, target, item))

    def drain(self, timeout_s: float = 2.0) -> bool:
        """Block until every posted item has been delivered (or dropped)."""
        return wait_until(lambda: self._pending == 0, 0.005, timeout_s)

    def close(self) -> None:
        """Stop the worker thread. Pending items are discarded."""
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is not None:
            self._queue.put(None)
            thread.join(timeout=2)

    def _targets(self, target: str) -> List[LocalTransport]:
        with self._lock:
            if target == BROADCAST:
                return list(self._endpoints.values())
            endpoint = self._endpoints.get(target.casefold())
            return [endpoint] if endpoint is not None else []

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            kind, target, payload = item
            try:
                if self.latency_s > 0:
                    time.sleep(self.latency_s)
                targets = self._targets(target)
                if not targets:
                    logger.debug("No endpoint for %s; %s dropped", target, kind)
                for endpoint in targets:
                    if self.drop_rate > 0 and self._rng.random() < self.drop_rate:
                        self.dropped += 1
                        continue
                    self.delivered += 1
                    if kind == "msg":
                        endpoint._dispatch(payload)  # type: ignore[arg-type]
                    else:
                        endpoint._execute(payload)  # type: ignore[arg-type]
            finally:
                with self._lock:
                    self._pending -= 1


class LocalTransport(Transport):
    """A transport endpoint on a :class:`LocalBus`."""

    name = "local"

    def __init__(self, bus: LocalBus, identity: str):
        super().__init__(identity)
        self.bus = bus

    def start(self) -> None:
        if self._started:
            return
        self.bus.attach(self)
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self.bus.detach(self)
        self._started = False
        self.unregister_handler()

    def send(self, target: str, message: Message) -> None:
        if not self._started:
            logger.debug("%s: send while stopped, %s dropped", self.identity, message.kind.value)
            return
        self.bus.post("msg", target, message)

    def relay_command(self, target: str, command: str) -> None:
        if not self._started:
            return
        self.bus.post("cmd", target, command)

    def reachable_peers(self) -> List[str]:
        return self.bus.peers()

"""
Transport contract shared by every mailbox backend.

Delivery is fire-and-forget: at most once, unordered, possibly lost. A
broadcast reaches every reachable process, generally including the sender.
Handlers run on the transport's delivery thread and must return quickly.

Besides messages, a transport relays opaque command strings to a named
character's process, where the registered command executor runs them.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from groupdesigner.actors.message import Message
from groupdesigner.errors import TransportUnavailable

logger = logging.getLogger("GroupDesigner.Actors.Transport")

#: Target address meaning "every reachable process".
BROADCAST = "*"

MessageHandler = Callable[[Message], None]
CommandExecutor = Callable[[str], None]


class Transport(ABC):
    """Abstract mailbox transport bound to one character identity.

    Args:
        identity: This process's character name.
    """

    name: str = "base"

    def __init__(self, identity: str):
        self.identity = identity
        self.instance = uuid.uuid4().hex[:12]
        self._handler: Optional[MessageHandler] = None
        self._executor: Optional[CommandExecutor] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    def start(self) -> None:
        """Connect. Raises :class:`TransportUnavailable` on failure."""

    @abstractmethod
    def stop(self) -> None:
        """Disconnect. Safe to call more than once."""

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(self, handler: MessageHandler) -> None:
        """Install the single inbound message handler for this process.

        Raises:
            TransportUnavailable: Transport not started, or a handler is
                already registered.
        """
        if not self._started:
            raise TransportUnavailable(f"{self.name} transport for {self.identity} is not started")
        if self._handler is not None:
            raise TransportUnavailable(f"a mailbox is already registered for {self.identity}")
        self._handler = handler
        logger.debug("Registered mailbox for %s on %s transport", self.identity, self.name)

    def unregister_handler(self) -> None:
        self._handler = None

    def register_command_executor(self, executor: CommandExecutor) -> None:
        """Install the function that runs commands relayed to this character."""
        self._executor = executor

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    @abstractmethod
    def send(self, target: str, message: Message) -> None:
        """Deliver *message* to *target* (a character name or :data:`BROADCAST`)."""

    @abstractmethod
    def relay_command(self, target: str, command: str) -> None:
        """Ask *target*'s process to execute *command* locally."""

    def broadcast(self, message: Message) -> None:
        self.send(BROADCAST, message)

    @abstractmethod
    def reachable_peers(self) -> List[str]:
        """Names of the processes currently known to be reachable."""

    # ------------------------------------------------------------------
    # Inbound helpers for subclasses
    # ------------------------------------------------------------------

    def _dispatch(self, message: Message) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            handler(message)
        except Exception as exc:
            logger.error("Mailbox handler error for %s: %s", message.kind.value, exc)

    def _execute(self, command: str) -> None:
        executor = self._executor
        if executor is None:
            logger.warning("%s received a relayed command but has no executor: %s",
                           self.identity, command)
            return
        try:
            executor(command)
        except Exception as exc:
            logger.error("Relayed command failed on %s (%s): %s", self.identity, command, exc)

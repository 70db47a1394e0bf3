"""
GroupDesigner actor messages.

A closed set of five message kinds travels between the master and its
peers. Messages are plain JSON objects, readable with any MQTT client::

    request_data  -- master -> broadcast: poll trigger, peers reply peer_data
    peer_data     -- peer -> master: full status snapshot
    query_group   -- master -> broadcast: only ``target`` replies
    group_data    -- peer -> master: answer to query_group
    shutdown      -- any -> any: receiver stops its run loop

Every message carries the sender's character name and an ``instance`` id
unique to the sending process, so two processes claiming the same name can
be told apart. Unknown status fields travel as ``"---"``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

from groupdesigner.errors import MessageDecodeError
from groupdesigner.models import UNKNOWN, PeerStatus, clean_value


class MessageKind(str, Enum):
    """Wire names of the message kinds."""

    REQUEST_DATA = "request_data"
    PEER_DATA = "peer_data"
    QUERY_GROUP = "query_group"
    GROUP_DATA = "group_data"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True, kw_only=True)
class Message:
    """Common envelope fields. Use one of the concrete subclasses."""

    kind: ClassVar[MessageKind]

    sender: str
    instance: str = ""

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        d = {"type": self.kind.value, "sender": self.sender, "instance": self.instance}
        d.update(self.payload())
        return d

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def _from_payload(cls, sender: str, instance: str, data: Dict[str, Any]) -> Message:
        return cls(sender=sender, instance=instance)


@dataclass(frozen=True, kw_only=True)
class RequestData(Message):
    """Periodic poll broadcast by the master."""

    kind: ClassVar[MessageKind] = MessageKind.REQUEST_DATA

    def payload(self) -> Dict[str, Any]:
        return {"from": self.sender}


@dataclass(frozen=True, kw_only=True)
class PeerData(Message):
    """A peer's status snapshot. ``status`` fields are ``None`` when unknown."""

    kind: ClassVar[MessageKind] = MessageKind.PEER_DATA

    status: PeerStatus

    def payload(self) -> Dict[str, Any]:
        return self.status.to_wire()

    @classmethod
    def _from_payload(cls, sender: str, instance: str, data: Dict[str, Any]) -> Message:
        if not clean_value(data.get("name")):
            raise MessageDecodeError("peer_data without a name")
        return cls(sender=sender, instance=instance, status=PeerStatus.from_wire(data))


@dataclass(frozen=True, kw_only=True)
class QueryGroup(Message):
    """Ask ``target`` for its current group roster."""

    kind: ClassVar[MessageKind] = MessageKind.QUERY_GROUP

    target: str
    query_id: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"target": self.target}
        if self.query_id:
            d["query_id"] = self.query_id
        return d

    @classmethod
    def _from_payload(cls, sender: str, instance: str, data: Dict[str, Any]) -> Message:
        target = clean_value(data.get("target"))
        if not target:
            raise MessageDecodeError("query_group without a target")
        return cls(sender=sender, instance=instance, target=target, query_id=data.get("query_id"))


@dataclass(frozen=True, kw_only=True)
class GroupData(Message):
    """Roster reply from ``character`` to a :class:`QueryGroup`."""

    kind: ClassVar[MessageKind] = MessageKind.GROUP_DATA

    character: str
    members: Tuple[str, ...] = field(default_factory=tuple)
    query_id: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"character": self.character, "members": list(self.members)}
        if self.query_id:
            d["query_id"] = self.query_id
        return d

    @classmethod
    def _from_payload(cls, sender: str, instance: str, data: Dict[str, Any]) -> Message:
        character = clean_value(data.get("character"))
        members = data.get("members")
        if not character or not isinstance(members, (list, tuple)):
            raise MessageDecodeError("group_data needs a character and a members list")
        return cls(
            sender=sender,
            instance=instance,
            character=character,
            members=tuple(str(m) for m in members if clean_value(m)),
            query_id=data.get("query_id"),
        )


@dataclass(frozen=True, kw_only=True)
class Shutdown(Message):
    """Ask the receiver to stop its run loop."""

    kind: ClassVar[MessageKind] = MessageKind.SHUTDOWN


_KINDS: Dict[MessageKind, Type[Message]] = {
    MessageKind.REQUEST_DATA: RequestData,
    MessageKind.PEER_DATA: PeerData,
    MessageKind.QUERY_GROUP: QueryGroup,
    MessageKind.GROUP_DATA: GroupData,
    MessageKind.SHUTDOWN: Shutdown,
}


def decode(data: Dict[str, Any]) -> Message:
    """Deserialise a message dict.

    Raises:
        MessageDecodeError: Unknown type, missing sender, or malformed payload.
    """
    if not isinstance(data, dict):
        raise MessageDecodeError("message must be a JSON object")
    try:
        kind = MessageKind(data.get("type"))
    except ValueError:
        raise MessageDecodeError(f"unknown message type: {data.get('type')!r}") from None
    sender = clean_value(data.get("sender")) or clean_value(data.get("from"))
    if not sender:
        raise MessageDecodeError(f"{kind.value} without a sender")
    instance = str(data.get("instance") or "")
    return _KINDS[kind]._from_payload(sender, instance, data)


def decode_json(raw: bytes | str) -> Message:
    """Deserialise a JSON-encoded message."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MessageDecodeError(f"invalid JSON: {exc}") from exc
    return decode(data)


__all__ = [
    "UNKNOWN",
    "GroupData",
    "Message",
    "MessageKind",
    "PeerData",
    "QueryGroup",
    "RequestData",
    "Shutdown",
    "decode",
    "decode_json",
]

"""groupdesigner.actors: messaging between the master and its peers.

Key classes:

- :class:`Transport`: fire-and-forget mailbox contract (send, broadcast,
  single handler registration, relayed commands).
- :class:`LocalBus` / :class:`LocalTransport`: in-process delivery with
  optional loss and latency, for tests and the demo.
- :class:`MQTTTransport`: one broker shared by every character process.
- :class:`Mailbox`: the handler every process registers; answers polls and
  group queries, and feeds the master's registry and response slots.

Message kinds (see :mod:`groupdesigner.actors.message`)::

    request_data  peer_data  query_group  group_data  shutdown
"""

from groupdesigner.actors.local import LocalBus, LocalTransport
from groupdesigner.actors.mailbox import Mailbox
from groupdesigner.actors.message import (
    GroupData,
    Message,
    MessageKind,
    PeerData,
    QueryGroup,
    RequestData,
    Shutdown,
    decode,
    decode_json,
)
from groupdesigner.actors.mqtt_transport import MQTTTransport
from groupdesigner.actors.transport import BROADCAST, Transport

__all__ = [
    "BROADCAST",
    "GroupData",
    "LocalBus",
    "LocalTransport",
    "MQTTTransport",
    "Mailbox",
    "Message",
    "MessageKind",
    "PeerData",
    "QueryGroup",
    "RequestData",
    "Shutdown",
    "Transport",
    "decode",
    "decode_json",
]

"""
groupdesigner/actors/mqtt_transport.py: MQTT mailbox transport.

Every character process connects to the same broker. Topics (all under a
configurable prefix)::

    <prefix>/broadcast         every process subscribes
    <prefix>/inbox/<name>      point-to-point messages for one character
    <prefix>/command/<name>    relayed command strings for one character

Names in topics are lower-cased, matching the case-insensitive character
names used everywhere else. QoS defaults to 0: delivery is at most once and
the protocol above tolerates loss.

Config keys (``transport`` section):
    broker_host:     MQTT broker hostname (default: localhost, env MQTT_BROKER_HOST)
    broker_port:     Broker port (default: 1883, env MQTT_BROKER_PORT)
    topic_prefix:    Topic prefix (default: groupdesigner)
    username:        MQTT username  (or env MQTT_USERNAME)
    password:        MQTT password  (or env MQTT_PASSWORD)
    keepalive:       Keepalive in seconds (default: 60)
    qos:             QoS level 0/1/2 (default: 0)
    tls:             Enable TLS (default: false)
    connect_timeout: Seconds to wait for the broker (default: 10)
    peer_ttl:        Seconds a silent peer still counts as reachable (default: 60)
"""

from __future__ import annotations

import logging
import os
import threading
import time
from typing import Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt

from groupdesigner.actors.message import Message, decode_json
from groupdesigner.actors.transport import BROADCAST, Transport
from groupdesigner.errors import MessageDecodeError, TransportUnavailable

logger = logging.getLogger("GroupDesigner.Actors.MQTT")


class MQTTTransport(Transport):
    """Mailbox transport over an MQTT broker, powered by paho-mqtt."""

    name = "mqtt"

    def __init__(self, identity: str, config: Optional[dict] = None):
        super().__init__(identity)
        config = config or {}
        self._broker_host = config.get("broker_host", os.getenv("MQTT_BROKER_HOST", "localhost"))
        self._broker_port = int(config.get("broker_port", os.getenv("MQTT_BROKER_PORT", "1883")))
        self._prefix = str(config.get("topic_prefix", "groupdesigner")).rstrip("/")
        self._username = config.get("username", os.getenv("MQTT_USERNAME", ""))
        self._password = config.get("password", os.getenv("MQTT_PASSWORD", ""))
        self._keepalive = int(config.get("keepalive", 60))
        self._qos = int(config.get("qos", 0))
        self._tls = bool(config.get("tls", False))
        self._connect_timeout = float(config.get("connect_timeout", 10.0))
        self._peer_ttl = float(config.get("peer_ttl", 60.0))
        self._client_id = config.get("client_id", f"groupdesigner-{identity}-{self.instance}")
        self._client = None
        self._connected = threading.Event()
        self._seen_lock = threading.Lock()
        self._seen: Dict[str, Tuple[str, float]] = {}

    # ── Topics ────────────────────────────────────────────────────────────────

    @property
    def broadcast_topic(self) -> str:
        return f"{self._prefix}/broadcast"

    def inbox_topic(self, name: str) -> str:
        return f"{self._prefix}/inbox/{name.casefold()}"

    def command_topic(self, name: str) -> str:
        return f"{self._prefix}/command/{name.casefold()}"

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Connect to the broker and subscribe to this character's topics.

        Raises:
            TransportUnavailable: The broker refused or did not answer in time.
        """
        if self._started:
            return

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self._client_id)
        if self._username:
            self._client.username_pw_set(self._username, self._password)
        if self._tls:
            self._client.tls_set()

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        try:
            self._client.connect(self._broker_host, self._broker_port, self._keepalive)
        except OSError as exc:
            self._client = None
            raise TransportUnavailable(
                f"MQTT: cannot reach {self._broker_host}:{self._broker_port}: {exc}"
            ) from exc

        # Run the paho network loop in a background daemon thread
        self._client.loop_start()

        if not self._connected.wait(self._connect_timeout):
            self._client.loop_stop()
            self._client = None
            raise TransportUnavailable(
                f"MQTT: could not connect to {self._broker_host}:{self._broker_port} "
                f"within {self._connect_timeout:.0f} s"
            )

        self._started = True
        logger.info(
            "MQTT transport for %s connected to %s:%d (prefix=%r)",
            self.identity,
            self._broker_host,
            self._broker_port,
            self._prefix,
        )

    def stop(self) -> None:
        """Disconnect from the broker."""
        if self._client is not None:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None
        self._connected.clear()
        self._started = False
        self.unregister_handler()
        logger.info("MQTT transport for %s disconnected", self.identity)

    # ── Sending ───────────────────────────────────────────────────────────────

    def send(self, target: str, message: Message) -> None:
        if self._client is None or not self._connected.is_set():
            logger.debug("MQTT not connected; %s to %s dropped", message.kind.value, target)
            return
        topic = self.broadcast_topic if target == BROADCAST else self.inbox_topic(target)
        self._client.publish(topic, message.to_json(), qos=self._qos)

    def relay_command(self, target: str, command: str) -> None:
        if self._client is None or not self._connected.is_set():
            logger.debug("MQTT not connected; command for %s dropped", target)
            return
        self._client.publish(self.command_topic(target), command.encode("utf-8"), qos=self._qos)

    def reachable_peers(self) -> List[str]:
        cutoff = time.time() - self._peer_ttl
        with self._seen_lock:
            names = [name for name, seen in self._seen.values() if seen >= cutoff]
        if not any(n.casefold() == self.identity.casefold() for n in names):
            names.append(self.identity)
        return names

    # ── MQTT callbacks (execute in paho's internal thread) ────────────────────

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("MQTT connect failed: %s", reason_code)
            return
        for topic in (
            self.broadcast_topic,
            self.inbox_topic(self.identity),
            self.command_topic(self.identity),
        ):
            client.subscribe(topic, qos=self._qos)
        self._connected.set()
        logger.debug("MQTT connected, subscribed for %s", self.identity)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning("MQTT unexpected disconnect (%s), will auto-reconnect", reason_code)
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        if msg.topic == self.command_topic(self.identity):
            command = msg.payload.decode("utf-8", errors="replace").strip()
            logger.debug("Relayed command for %s: %s", self.identity, command)
            self._execute(command)
            return

        try:
            message = decode_json(msg.payload)
        except MessageDecodeError as exc:
            logger.warning("Discarding malformed message on %r: %s", msg.topic, exc)
            return

        with self._seen_lock:
            self._seen[message.sender.casefold()] = (message.sender, time.time())
        self._dispatch(message)

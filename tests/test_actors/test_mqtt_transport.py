"""Tests for groupdesigner/actors/mqtt_transport.py -- MQTT mailbox transport."""

from unittest.mock import MagicMock, patch

import pytest

from groupdesigner.actors.message import GroupData, RequestData
from groupdesigner.actors.mqtt_transport import MQTTTransport
from groupdesigner.actors.transport import BROADCAST
from groupdesigner.errors import TransportUnavailable

_OK = MagicMock(is_failure=False)
_FAIL = MagicMock(is_failure=True)


def _message(topic, payload):
    msg = MagicMock()
    msg.topic = topic
    msg.payload = payload
    return msg


def _connected_transport(identity="Bob", **config):
    transport = MQTTTransport(identity, {"broker_host": "localhost", **config})
    client = MagicMock()
    transport._client = client
    transport._connected.set()
    transport._started = True
    return transport, client


# ── Construction ──────────────────────────────────────────────────────────────


def test_defaults():
    transport = MQTTTransport("Bob", {})
    assert transport.name == "mqtt"
    assert transport._broker_port == 1883
    assert transport.broadcast_topic == "groupdesigner/broadcast"


def test_topics_are_lower_cased():
    transport = MQTTTransport("Bob", {"topic_prefix": "eq/"})
    assert transport.inbox_topic("Bob") == "eq/inbox/bob"
    assert transport.command_topic("CAROL") == "eq/command/carol"


def test_env_var_defaults(monkeypatch):
    monkeypatch.setenv("MQTT_BROKER_HOST", "env-broker")
    monkeypatch.setenv("MQTT_BROKER_PORT", "8883")
    transport = MQTTTransport("Bob", {})
    assert transport._broker_host == "env-broker"
    assert transport._broker_port == 8883


# ── Lifecycle ─────────────────────────────────────────────────────────────────


class TestStart:
    def test_start_connects_and_waits(self):
        transport = MQTTTransport("Bob", {"broker_host": "broker", "connect_timeout": 1})
        with patch("groupdesigner.actors.mqtt_transport.mqtt.Client") as client_cls:
            client = client_cls.return_value
            client.connect.side_effect = lambda *a: transport._on_connect(client, None, None, _OK)
            transport.start()
        assert transport.started
        client.connect.assert_called_once_with("broker", 1883, 60)
        client.loop_start.assert_called_once()
        subscribed = [c.args[0] for c in client.subscribe.call_args_list]
        assert subscribed == [
            "groupdesigner/broadcast",
            "groupdesigner/inbox/bob",
            "groupdesigner/command/bob",
        ]

    def test_unreachable_broker(self):
        transport = MQTTTransport("Bob", {"broker_host": "nowhere"})
        with patch("groupdesigner.actors.mqtt_transport.mqtt.Client") as client_cls:
            client_cls.return_value.connect.side_effect = OSError("refused")
            with pytest.raises(TransportUnavailable, match="cannot reach"):
                transport.start()
        assert not transport.started

    def test_connect_timeout(self):
        transport = MQTTTransport("Bob", {"connect_timeout": 0.05})
        with patch("groupdesigner.actors.mqtt_transport.mqtt.Client") as client_cls:
            with pytest.raises(TransportUnavailable, match="could not connect"):
                transport.start()
            client_cls.return_value.loop_stop.assert_called_once()

    def test_register_requires_start(self):
        with pytest.raises(TransportUnavailable):
            MQTTTransport("Bob", {}).register_handler(lambda m: None)

    def test_stop_disconnects(self):
        transport, client = _connected_transport()
        transport.stop()
        client.loop_stop.assert_called_once()
        client.disconnect.assert_called_once()
        assert not transport.started


# ── Sending ───────────────────────────────────────────────────────────────────


class TestSend:
    def test_broadcast_topic(self):
        transport, client = _connected_transport()
        transport.send(BROADCAST, RequestData(sender="Bob"))
        topic, payload = client.publish.call_args[0]
        assert topic == "groupdesigner/broadcast"
        assert b"request_data" in payload

    def test_point_to_point_topic(self):
        transport, client = _connected_transport()
        transport.send("Alice", GroupData(sender="Bob", character="Bob", members=("Bob",)))
        assert client.publish.call_args[0][0] == "groupdesigner/inbox/alice"

    def test_relay_command_topic(self):
        transport, client = _connected_transport()
        transport.relay_command("Carol", "/docommand /disband")
        topic, payload = client.publish.call_args[0]
        assert topic == "groupdesigner/command/carol"
        assert payload == b"/docommand /disband"

    def test_send_noop_when_disconnected(self):
        transport = MQTTTransport("Bob", {})
        transport.send(BROADCAST, RequestData(sender="Bob"))  # should not raise


# ── Callbacks ─────────────────────────────────────────────────────────────────


class TestCallbacks:
    def test_on_connect_failure_does_not_set_event(self):
        transport = MQTTTransport("Bob", {})
        client = MagicMock()
        transport._on_connect(client, None, None, _FAIL)
        assert not transport._connected.is_set()
        client.subscribe.assert_not_called()

    def test_on_disconnect_clears_event(self):
        transport, client = _connected_transport()
        transport._on_disconnect(client, None, None, _FAIL)
        assert not transport._connected.is_set()

    def test_message_dispatched_to_handler(self):
        transport, client = _connected_transport()
        inbox = []
        transport.register_handler(inbox.append)
        payload = RequestData(sender="Alice", instance="a1").to_json()
        transport._on_message(client, None, _message("groupdesigner/broadcast", payload))
        assert len(inbox) == 1
        assert inbox[0].sender == "Alice"

    def test_malformed_message_discarded(self):
        transport, client = _connected_transport()
        inbox = []
        transport.register_handler(inbox.append)
        transport._on_message(client, None, _message("groupdesigner/broadcast", b"{oops"))
        transport._on_message(client, None, _message("groupdesigner/broadcast", b'{"type": "x"}'))
        assert inbox == []

    def test_command_topic_runs_executor(self):
        transport, client = _connected_transport()
        executed = []
        transport.register_command_executor(executed.append)
        transport._on_message(
            client, None, _message("groupdesigner/command/bob", b"/docommand /inv Carol\n")
        )
        assert executed == ["/docommand /inv Carol"]

    def test_reachable_peers_tracks_senders(self):
        transport, client = _connected_transport()
        transport._on_message(
            client, None,
            _message("groupdesigner/broadcast", RequestData(sender="Alice").to_json()),
        )
        assert sorted(transport.reachable_peers()) == ["Alice", "Bob"]

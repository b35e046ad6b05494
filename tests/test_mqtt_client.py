import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from blead2mqtt import mqtt_client
from blead2mqtt.config import MqttConfig
from blead2mqtt.errors import BrokerConnectTimeout, PublishPrecondition
from blead2mqtt.mqtt_client import MqttPublisher, serialize_payload
from blead2mqtt.transform import Message


@pytest.fixture
def fake_client(monkeypatch):
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.publish = AsyncMock()
    factory = MagicMock(return_value=client)
    monkeypatch.setattr(mqtt_client.aiomqtt, "Client", factory)
    client.factory = factory
    return client


@pytest.mark.asyncio
async def test_connect_sets_will_and_announces_online(fake_client):
    publisher = MqttPublisher(MqttConfig(host="broker", port=1884, username="user", password="secret"))

    await publisher.connect()

    kwargs = fake_client.factory.call_args.kwargs
    assert kwargs["hostname"] == "broker"
    assert kwargs["port"] == 1884
    assert kwargs["identifier"] == "blead2mqtt"
    assert kwargs["username"] == "user"
    assert kwargs["password"] == "secret"
    assert kwargs["keepalive"] == 60
    assert kwargs["tls_context"] is None
    will = kwargs["will"]
    assert will.topic == "blead2mqtt/status"
    assert will.qos == 2
    assert will.retain is True
    fake_client.publish.assert_awaited_once_with("blead2mqtt/status", "online", qos=2, retain=True)
    assert publisher.connected


@pytest.mark.asyncio
async def test_no_status_messages_without_status_topic(fake_client):
    publisher = MqttPublisher(MqttConfig(status_topic=None))
    await publisher.connect()
    assert fake_client.factory.call_args.kwargs["will"] is None
    fake_client.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_online_announcement_failure_disconnects(fake_client):
    fake_client.publish.side_effect = RuntimeError("publish failed")
    publisher = MqttPublisher(MqttConfig())

    with pytest.raises(RuntimeError, match="publish failed"):
        async with publisher:
            pass

    fake_client.__aexit__.assert_awaited_once()
    assert not publisher.connected
    with pytest.raises(PublishPrecondition, match="not connected"):
        await publisher.publish(Message(topic="a"))


@pytest.mark.asyncio
async def test_connect_timeout(fake_client):
    async def never_connects(*args):
        await asyncio.sleep(10)

    fake_client.__aenter__ = AsyncMock(side_effect=never_connects)
    publisher = MqttPublisher(MqttConfig(connect_timeout=0.05))

    with pytest.raises(BrokerConnectTimeout, match="Unable to connect to MQTT broker within 0.05 seconds"):
        await publisher.connect()
    assert not publisher.connected


@pytest.mark.asyncio
async def test_publish_serializes_and_applies_defaults(fake_client):
    publisher = MqttPublisher(MqttConfig(status_topic=None, default_qos=1, default_retain=False))
    await publisher.connect()

    await publisher.publish(Message(topic="t/a", payload={"b": [1, 2]}))
    await publisher.publish(Message(topic="t/s", payload="text", qos=0, retain=True))
    await publisher.publish(Message(topic="t/n", payload=17.5))

    calls = fake_client.publish.await_args_list
    assert calls[0].args == ("t/a", json.dumps({"b": [1, 2]}))
    assert calls[0].kwargs == {"qos": 1, "retain": False}
    assert calls[1].args == ("t/s", "text")
    assert calls[1].kwargs == {"qos": 0, "retain": True}
    assert calls[2].args == ("t/n", "17.5")
    assert publisher.messages_sent == 3


@pytest.mark.asyncio
async def test_publish_requires_topic(fake_client):
    async with MqttPublisher(MqttConfig(status_topic=None)) as publisher:
        with pytest.raises(PublishPrecondition, match="No topic specified"):
            await publisher.publish(Message(topic="", payload=1))
    fake_client.__aexit__.assert_awaited_once()


@pytest.mark.asyncio
async def test_publish_before_connect():
    publisher = MqttPublisher(MqttConfig())
    with pytest.raises(PublishPrecondition):
        await publisher.publish(Message(topic="t", payload=1))


@pytest.mark.asyncio
async def test_disconnect_errors_are_logged_not_raised(fake_client):
    fake_client.__aexit__ = AsyncMock(side_effect=RuntimeError("socket closed"))
    publisher = MqttPublisher(MqttConfig(status_topic=None))
    await publisher.connect()
    await publisher.disconnect()
    assert not publisher.connected


def test_serialize_payload():
    assert serialize_payload("x") == "x"
    assert serialize_payload(None) == "null"
    assert serialize_payload((1, 2)) == "[1, 2]"
    assert serialize_payload({"name": "温度"}) == '{"name": "温度"}'

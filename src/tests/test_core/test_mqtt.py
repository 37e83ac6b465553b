import json
from unittest.mock import MagicMock

import pytest

from serial_gateway.adapters.mqtt import MQTTAdapter
from serial_gateway.handlers.mqtt_handlers import MQTTMessageHandlers
from serial_gateway.utils.exceptions import CommunicationError, PublishError


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.send.return_value = True
    return gateway


@pytest.mark.asyncio
async def test_downlink_is_sent_to_the_tag(gateway):
    handlers = MQTTMessageHandlers(gateway)

    await handlers.downlink_handler("gateway/downlink", {"address": "01A2", "message": "LED:1"})

    message = gateway.send.call_args.args[0]
    assert message.address == "01a2"
    assert message.payload == "LED:1"


@pytest.mark.asyncio
async def test_downlink_json_string_without_address(gateway):
    handlers = MQTTMessageHandlers(gateway)

    await handlers.downlink_handler("gateway/downlink", json.dumps({"message": "hello"}))

    assert gateway.send.call_args.args[0].address is None


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    "not json",
    {"address": "01a2"},
    {"address": "nothex", "message": "x"},
    ["message"],
])
async def test_invalid_downlink_is_ignored(gateway, payload):
    handlers = MQTTMessageHandlers(gateway)

    await handlers.downlink_handler("gateway/downlink", payload)

    gateway.send.assert_not_called()


def test_invalid_mqtt_config():
    with pytest.raises(CommunicationError):
        MQTTAdapter({"port": 1883})


@pytest.mark.asyncio
async def test_record_is_queued_with_prefix_while_offline():
    adapter = MQTTAdapter({"host": "localhost", "topic_prefix": "site1/", "publish_qos": 1})

    with pytest.raises(CommunicationError):
        await adapter.publish_record("sensordata", {"address": None, "data": {"temperature": 20}})

    queued = adapter._publish_queue.get_nowait()
    assert queued.topic == "site1/sensordata"
    assert queued.qos == 1
    assert json.loads(queued.payload) == {"address": None, "data": {"temperature": 20}}


@pytest.mark.asyncio
async def test_full_queue_raises_publish_error():
    adapter = MQTTAdapter({"host": "localhost", "publish_queue_size": 1})
    adapter.connected.set()

    await adapter.publish_record("event", {"data": {}})
    with pytest.raises(PublishError):
        await adapter.publish_record("event", {"data": {}})

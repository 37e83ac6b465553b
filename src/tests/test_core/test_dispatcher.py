import logging
from unittest.mock import AsyncMock

import pytest

from serial_gateway.core.dispatcher import ForwardingDispatcher
from serial_gateway.models.messages import PublishAction
from serial_gateway.utils.exceptions import CommunicationError


def make_sink(side_effect=None):
    sink = AsyncMock()
    sink.publish_record.side_effect = side_effect
    return sink


@pytest.mark.asyncio
async def test_action_is_published_to_every_sink():
    sinks = [make_sink(), make_sink()]
    dispatcher = ForwardingDispatcher(sinks)

    await dispatcher.dispatch(PublishAction("sensordata", "01a2", {"temperature": 20}))

    for sink in sinks:
        sink.publish_record.assert_awaited_once_with(
            "sensordata", {"address": "01a2", "data": {"temperature": 20}}
        )
    assert dispatcher.published == 2


@pytest.mark.asyncio
async def test_rows_are_included_when_present():
    sink = make_sink()
    dispatcher = ForwardingDispatcher([sink])

    await dispatcher.dispatch(PublishAction("sensordata", "", {"t": 2}, rows=[{"t": 1}, {"t": 2}]))

    topic, payload = sink.publish_record.call_args.args
    assert payload == {"address": None, "data": {"t": 2}, "rows": [{"t": 1}, {"t": 2}]}


@pytest.mark.asyncio
async def test_sink_failure_is_not_fatal():
    failing = make_sink(RuntimeError("boom"))
    healthy = make_sink()
    dispatcher = ForwardingDispatcher([failing, healthy])

    await dispatcher.publish("event", {"data": {}})

    healthy.publish_record.assert_awaited_once()
    assert dispatcher.failed == 1
    assert dispatcher.published == 1


@pytest.mark.asyncio
async def test_connection_errors_are_muted_during_outage(caplog):
    sink = make_sink(CommunicationError("Broker unreachable, message queued"))
    dispatcher = ForwardingDispatcher([sink], mute_connection_error=True)

    with caplog.at_level(logging.DEBUG, logger="serial_gateway.core.dispatcher"):
        for _ in range(3):
            await dispatcher.publish("event", {"data": {}})

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert dispatcher.failed == 3

    sink.publish_record.side_effect = None
    caplog.clear()
    with caplog.at_level(logging.INFO, logger="serial_gateway.core.dispatcher"):
        await dispatcher.publish("event", {"data": {}})
    assert "Broker reachable again" in caplog.text


@pytest.mark.asyncio
async def test_connection_errors_logged_each_time_without_mute(caplog):
    sink = make_sink(CommunicationError("down"))
    dispatcher = ForwardingDispatcher([sink])

    with caplog.at_level(logging.WARNING, logger="serial_gateway.core.dispatcher"):
        for _ in range(3):
            await dispatcher.publish("event", {"data": {}})

    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 3


@pytest.mark.asyncio
async def test_offline_mode_only_logs(caplog):
    sink = make_sink()
    dispatcher = ForwardingDispatcher([sink], offline=True)

    with caplog.at_level(logging.INFO, logger="serial_gateway.core.dispatcher"):
        await dispatcher.publish("event", {"data": {"x": 1}})

    sink.publish_record.assert_not_awaited()
    assert "[event]" in caplog.text

import logging

import pytest

from serial_gateway.core.session import SessionRouter
from serial_gateway.models.messages import DecodedField

SENSORDATA = frozenset({"sensordata"})
MESSAGES = frozenset({"additionalMessages"})
TOPICS = ["event", "tamaActions", "additionalMessages", "sensordata"]


def temperature(value):
    return DecodedField("temperature", value, SENSORDATA)


@pytest.fixture
def router():
    return SessionRouter(TOPICS, max_rows=10)


def test_forced_field_publishes_with_nothing_buffered(router):
    actions = router.ingest("", [DecodedField("msg1", "hello", MESSAGES, force_send=True)], now=0)

    assert len(actions) == 1
    assert actions[0].topic == "additionalMessages"
    assert actions[0].record == {"msg1": "hello"}
    assert actions[0].rows == []


def test_non_forced_fields_accumulate_silently(router):
    assert router.ingest("", [temperature(20), temperature(21)], now=0) == []
    assert router.sessions[""].row_count == 2


def test_forced_field_flushes_buffered_fields_of_its_topics(router):
    router.ingest("", [temperature(20), DecodedField("msg1", "a", MESSAGES, force_send=True)], now=0)
    actions = router.ingest("", [DecodedField("alarm", "hot", SENSORDATA, force_send=True)], now=1)

    assert [(a.topic, a.record) for a in actions] == [("sensordata", {"temperature": 20, "alarm": "hot"})]
    assert router.sessions[""].row_count == 0


def test_forced_field_leaves_other_topics_buffered(router):
    router.ingest("", [temperature(20)], now=0)
    actions = router.ingest("", [DecodedField("msg1", "a", MESSAGES, force_send=True)], now=1)

    assert [a.topic for a in actions] == ["additionalMessages"]
    assert router.sessions[""].row_count == 1


def test_last_write_wins_in_merged_record(router):
    router.ingest("", [temperature(20), temperature(25)], now=0)
    actions = router.end_session("")

    assert actions[0].record == {"temperature": 25}
    assert actions[0].rows == [{"temperature": 20}, {"temperature": 25}]


def test_row_counter_is_capped_and_overflow_still_flushed(router):
    router.ingest("0001", [], session=True, now=0)
    for value in range(router.max_rows + 50):
        router.ingest("0001", [temperature(value)], now=1)

    assert router.sessions["0001"].row_count == router.max_rows

    actions = router.ingest("0001", [], session=False, now=2)

    assert len(actions) == 1
    assert len(actions[0].rows) == router.max_rows
    assert actions[0].rows == [{"temperature": v} for v in range(router.max_rows)]
    # Past-cap fields are merged, the latest one wins
    assert actions[0].record == {"temperature": router.max_rows + 49}
    assert "0001" not in router.sessions


def test_session_start_resets_buffer(router):
    router.ingest("0001", [temperature(1)], now=0)
    router.ingest("0001", [temperature(2)], session=True, now=1)

    session = router.sessions["0001"]
    assert session.active
    assert [d.value for d in session.rows] == [2]


def test_session_end_flushes_every_topic(router):
    router.ingest("", [temperature(1), DecodedField("timeStamp", 5, frozenset({"event", "sensordata"}))], now=0)
    actions = router.ingest("", [], session=False, now=1)

    assert [a.topic for a in actions] == ["event", "sensordata"]
    assert actions[0].record == {"timeStamp": 5}
    assert actions[1].record == {"temperature": 1, "timeStamp": 5}


def test_end_without_session_publishes_nothing(router):
    assert router.end_session("abcd") == []


def test_inactive_topics_are_not_forwarded(router):
    actions = router.ingest("", [DecodedField("x", 1, frozenset({"commands"}), force_send=True)], now=0)

    assert actions == []
    assert router.sessions[""].row_count == 0


def test_duplicate_replies_suppressed_within_window():
    router = SessionRouter(TOPICS, multiplexed=True, address_timeout=10)

    assert router.accept_reply("01a2", b"ping:1", now=0)
    assert not router.accept_reply("01a2", b"ping:1", now=5)
    assert router.accept_reply("0003", b"ping:1", now=5)
    assert router.accept_reply("01a2", b"ping:1", now=10.5)


def test_quiet_addresses_expire():
    router = SessionRouter(TOPICS, multiplexed=True, address_timeout=10)
    router.ingest("0001", [temperature(1)], now=0)
    router.ingest("0002", [temperature(2)], now=11)

    assert "0001" not in router.sessions
    assert "0002" in router.sessions


def test_snapshot(router):
    router.ingest("", [temperature(1)], now=0)

    assert router.snapshot() == [{"address": "", "active": False, "rows": 1, "pending": ["temperature"]}]


def test_fields_outside_a_session_are_buffered_and_logged(router, caplog):
    with caplog.at_level(logging.DEBUG, logger="serial_gateway.core.session"):
        router.ingest("", [temperature(1)], now=0)
        router.ingest("", [temperature(2)], now=1)

    assert not router.sessions[""].active
    assert router.sessions[""].row_count == 2
    assert caplog.text.count("outside of a session") == 1

    actions = router.ingest("", [], session=False, now=2)
    assert actions[0].rows == [{"temperature": 1}, {"temperature": 2}]

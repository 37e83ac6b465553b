from unittest.mock import MagicMock

import pytest

from serial_gateway.core.heartbeat import HeartbeatMonitor, in_suspect_window, is_heartbeat_reply
from serial_gateway.models.messages import ConnectionState, LinkStatus


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    link = LinkStatus(state=ConnectionState.CONNECTED)
    return HeartbeatMonitor(MagicMock(), MagicMock(), link, interval=15.0, clock=clock)


@pytest.mark.parametrize("elapsed, suspect", [
    (15.0, False),
    (22.5, False),   # exactly 1.5x
    (22.51, True),
    (30.0, True),
    (37.49, True),
    (37.5, False),   # exactly 2.5x
    (45.0, False),
])
def test_suspect_window_boundaries(elapsed, suspect):
    assert in_suspect_window(elapsed, 15.0) is suspect


def test_probe_flags_suspect_after_missed_reply(monitor, clock):
    clock.now = 30.0
    monitor.probe()

    assert monitor.link.state == ConnectionState.SUSPECT
    message = monitor.transport.write.call_args.args[0]
    assert message.payload == "\x00\x00\x01HB"
    assert message.internal


def test_probe_at_lower_boundary_does_not_flag(monitor, clock):
    clock.now = 22.5
    monitor.probe()

    assert monitor.link.state == ConnectionState.CONNECTED
    monitor.transport.write.assert_called_once()


def test_probe_at_upper_boundary_does_not_flag(monitor, clock):
    clock.now = 37.5
    assert not monitor.check()
    assert monitor.link.state == ConnectionState.CONNECTED


def test_crash_reported_once(monitor, clock):
    flagged = []
    for tick in (15.0, 30.0, 45.0, 60.0):
        clock.now = tick
        flagged.append(monitor.check())

    assert flagged == [False, True, False, False]


def test_reply_restores_connected(monitor, clock):
    clock.now = 30.0
    monitor.probe()
    monitor.record()

    assert monitor.link.state == ConnectionState.CONNECTED
    assert monitor.last_heartbeat == 30.0

    clock.now = 45.0
    assert not monitor.check()


def test_no_probe_while_disconnected(monitor):
    monitor.link.state = ConnectionState.AWAITING_CHALLENGE_RESPONSE
    monitor.probe()

    monitor.transport.write.assert_not_called()


def test_heartbeat_reply_detection():
    assert is_heartbeat_reply(b"\xfe\xfe\x02")
    assert not is_heartbeat_reply(b"\xfe\xfe\x01ServerTag")

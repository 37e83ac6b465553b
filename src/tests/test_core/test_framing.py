import pytest

from serial_gateway.models.messages import OutboundMessage
from serial_gateway.protocol.framing import (
    DelimiterFramer,
    LengthFramer,
    create_framer,
    describe_outbound,
    encode_outbound,
    is_control_frame,
)


def test_delimiter_framer_splits_and_buffers_partial_frames():
    framer = DelimiterFramer(0x00)

    assert framer.feed(b"id:01A2,temp:23.5\x00temp:2") == [b"id:01A2,temp:23.5"]
    assert framer.pending == len(b"temp:2")
    assert framer.feed(b"4\x00\x00") == [b"temp:24"]
    assert framer.pending == 0


def test_delimiter_framer_custom_byte():
    framer = DelimiterFramer(0xF2)
    assert framer.feed(b"a:1\xf2b:2\xf2") == [b"a:1", b"b:2"]


def test_length_framer_emits_fixed_chunks():
    framer = LengthFramer(4)

    assert framer.feed(b"abcdef") == [b"abcd"]
    assert framer.feed(b"gh") == [b"efgh"]
    assert framer.feed(b"ij") == []


def test_framer_reset_drops_partial_data():
    framer = create_framer("length", rxlength=4)
    framer.feed(b"ab")
    framer.reset()
    assert framer.feed(b"cdef") == [b"cdef"]


def test_unknown_pipe_mode():
    with pytest.raises(ValueError):
        create_framer("lines")


def test_encode_direct_mode_truncates_and_terminates():
    buffer = encode_outbound(OutboundMessage(payload="hello world"), txlength=8, multiplexed=False)

    assert len(buffer) == 8
    assert buffer == b"hello w\x00"


def test_encode_multiplexed_prefixes_little_endian_address():
    buffer = encode_outbound(OutboundMessage(payload="hello", address="01a2"), txlength=10, multiplexed=True)

    assert buffer == b"\xa2\x01hello\x00\x00\x00"


def test_encode_multiplexed_truncates_after_address():
    buffer = encode_outbound(OutboundMessage(payload="hello", address="0001"), txlength=6, multiplexed=True)

    assert buffer == b"\x01\x00hel\x00"


def test_encode_multiplexed_broadcast():
    buffer = encode_outbound(OutboundMessage(payload="all"), txlength=8, multiplexed=True)

    assert buffer[:2] == b"\xff\xff"
    assert buffer[2:] == b"all\x00\x00\x00"


def test_internal_messages_are_never_address_prefixed():
    message = OutboundMessage(payload="\x00\x00\x01HB", internal=True)
    buffer = encode_outbound(message, txlength=8, multiplexed=True)

    assert buffer == b"\x00\x00\x01HB\x00\x00\x00"


def test_describe_outbound():
    buffer = encode_outbound(OutboundMessage(payload="pong", address="beef"), txlength=10, multiplexed=True)

    assert describe_outbound(buffer, multiplexed=True) == ("beef", "pong")


def test_control_frame_detection():
    assert is_control_frame(b"\xfe\xfe\x01ServerTag")
    assert not is_control_frame(b"\xfe\xfe")
    assert not is_control_frame(b"temp:1")


@pytest.mark.parametrize("address", ["0x1", "+1", "-1", " 1", "", "12345", "g1"])
def test_outbound_address_must_be_hex_digits(address):
    with pytest.raises(ValueError):
        OutboundMessage(payload="x", address=address)


def test_outbound_address_is_lowercased():
    assert OutboundMessage(payload="x", address="01A2").address == "01a2"
    assert OutboundMessage(payload="x", address="f").address == "f"

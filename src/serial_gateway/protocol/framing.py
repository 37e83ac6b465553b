# Wire framing for the serial link
#
# Inbound: the byte stream is sliced into frames either at a delimiter byte or in fixed
# rxlength chunks. Outbound: every message occupies exactly txlength bytes; in multiplexed
# mode the first two bytes hold the little-endian destination address.

import struct
from abc import ABC, abstractmethod
from typing import List

from ..models.messages import OutboundMessage, BROADCAST_ADDRESS

# Control frames sent by the device start with two marker bytes followed by a type byte
CONTROL_MARKER = b"\xfe\xfe"
CHALLENGE_RESPONSE = 0x01
HEARTBEAT_REPLY = 0x02

CHALLENGE = "\x00\x00\x01Identify"
HEARTBEAT_PROBE = "\x00\x00\x01HB"


class Framer(ABC):
    def __init__(self):
        self._buffer = bytearray()

    @abstractmethod
    def feed(self, data: bytes) -> List[bytes]:
        """Append received bytes and return every complete frame"""
        pass

    def reset(self) -> None:
        self._buffer.clear()

    @property
    def pending(self) -> int:
        return len(self._buffer)


class DelimiterFramer(Framer):
    def __init__(self, delimiter: int = 0x00):
        super().__init__()
        self.delimiter = bytes([delimiter])

    def feed(self, data: bytes) -> List[bytes]:
        self._buffer.extend(data)
        frames = []
        while True:
            index = self._buffer.find(self.delimiter)
            if index < 0:
                break
            frame = bytes(self._buffer[:index])
            del self._buffer[:index + 1]
            if frame:
                frames.append(frame)
        return frames


class LengthFramer(Framer):
    def __init__(self, length: int):
        super().__init__()
        self.length = length

    def feed(self, data: bytes) -> List[bytes]:
        self._buffer.extend(data)
        frames = []
        while len(self._buffer) >= self.length:
            frames.append(bytes(self._buffer[:self.length]))
            del self._buffer[:self.length]
        return frames


def create_framer(pipe: str, delim: int = 0x00, rxlength: int = 82) -> Framer:
    if pipe == "delimiter":
        return DelimiterFramer(delim)
    if pipe == "length":
        return LengthFramer(rxlength)
    raise ValueError(f"Unknown pipe mode: {pipe}")


def encode_outbound(message: OutboundMessage, txlength: int, multiplexed: bool) -> bytes:
    """
    Serialize a message into a zero padded buffer of exactly txlength bytes.

    The payload is truncated so at least one trailing zero byte always remains.
    """
    buffer = bytearray(txlength)
    payload = message.payload.encode("ascii", errors="replace")
    if multiplexed and not message.internal:
        address = int(message.address or BROADCAST_ADDRESS, 16)
        struct.pack_into("<H", buffer, 0, address)
        payload = payload[:txlength - 3]
        buffer[2:2 + len(payload)] = payload
    else:
        payload = payload[:txlength - 1]
        buffer[:len(payload)] = payload
    return bytes(buffer)


def describe_outbound(buffer: bytes, multiplexed: bool, internal: bool = False):
    """Return (address, text) of an encoded buffer for log output"""
    if multiplexed and not internal:
        address = f"{struct.unpack_from('<H', buffer, 0)[0]:04x}"
        text = buffer[2:]
    else:
        address = ""
        text = buffer
    return address, text.replace(b"\x00", b"").decode("ascii", errors="replace")


def is_control_frame(frame: bytes) -> bool:
    return len(frame) >= 3 and frame[:2] == CONTROL_MARKER


def control_type(frame: bytes) -> int:
    return frame[2]


def strip_padding(frame: bytes) -> bytes:
    return frame.rstrip(b"\x00")

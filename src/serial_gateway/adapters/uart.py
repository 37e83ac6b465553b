# adapters/uart.py
import asyncio
from typing import Callable, List, Optional

import serial
import serial_asyncio
from serial.tools import list_ports

from .base import CommunicationAdapter
from ..utils.exceptions import CommunicationError, WriteFailure
from ..utils.logging import get_logger

logger = get_logger(__name__)


def available_ports() -> List[str]:
    """Serial port device names in enumeration order"""
    return [port.device for port in list_ports.comports()]


class _SerialProtocol(asyncio.Protocol):
    def __init__(self, adapter: "UARTAdapter"):
        self.adapter = adapter

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.adapter._transport = transport

    def data_received(self, data: bytes) -> None:
        self.adapter._on_data(data)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.adapter._on_lost(exc)


class UARTAdapter(CommunicationAdapter):
    """
    Duplex serial stream.
    Received bytes are pushed to on_data as they arrive; on_close fires once the port is closed,
    whether the gateway closed it or the device went away.
    """
    def __init__(self, port: str, baudrate: int = 9600,
                 on_data: Optional[Callable[[bytes], None]] = None,
                 on_close: Optional[Callable[[Optional[Exception]], None]] = None):
        self.port = port
        self.baudrate = baudrate
        self.on_data = on_data
        self.on_close = on_close
        self.is_connected = False
        self._transport: Optional[asyncio.Transport] = None
        self._closed = asyncio.Event()

    async def connect(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await serial_asyncio.create_serial_connection(
                loop,
                lambda: _SerialProtocol(self),
                self.port,
                baudrate=self.baudrate,
            )
        except (serial.SerialException, OSError) as e:
            raise CommunicationError(f"Unable to open serial port {self.port}: {e}") from e
        self._closed.clear()
        self.is_connected = True
        logger.info(f"Connected to UART port {self.port} at {self.baudrate} baud")

    async def disconnect(self) -> None:
        if not self._transport or not self.is_connected:
            return
        self._transport.close()
        await self._closed.wait()

    async def read_data(self) -> bytes:
        """Not used - received data is pushed to on_data"""
        raise NotImplementedError("UART adapter uses callbacks for reading data")

    async def write_data(self, data: bytes) -> None:
        self.write(data)

    def write(self, data: bytes) -> None:
        if not self.is_connected or not self._transport:
            raise WriteFailure(f"UART port {self.port} not connected")
        try:
            self._transport.write(data)
        except (serial.SerialException, OSError) as e:
            raise WriteFailure(f"UART write error on {self.port}: {e}") from e

    def _on_data(self, data: bytes) -> None:
        if self.on_data:
            self.on_data(data)

    def _on_lost(self, exc: Optional[Exception]) -> None:
        self.is_connected = False
        self._transport = None
        self._closed.set()
        if exc:
            logger.warning(f"UART port {self.port} lost: {exc}")
        else:
            logger.info(f"Disconnected from UART port {self.port}")
        if self.on_close:
            self.on_close(exc)

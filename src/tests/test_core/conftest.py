import asyncio
from typing import Callable, List, Optional, Set

import pytest

from serial_gateway.utils.exceptions import CommunicationError, WriteFailure


class FakeSerialAdapter:
    """Stands in for UARTAdapter: records writes and lets tests push received bytes"""

    def __init__(self, port: str, fail_open: bool = False, fail_write: bool = False):
        self.port = port
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.is_connected = False
        self.on_data: Optional[Callable[[bytes], None]] = None
        self.on_close: Optional[Callable[[Optional[Exception]], None]] = None
        self.written: List[bytes] = []

    async def connect(self) -> None:
        if self.fail_open:
            raise CommunicationError(f"Unable to open serial port {self.port}")
        self.is_connected = True

    async def disconnect(self) -> None:
        if not self.is_connected:
            return
        self.is_connected = False
        if self.on_close:
            self.on_close(None)

    def write(self, data: bytes) -> None:
        if self.fail_write:
            raise WriteFailure(f"UART write error on {self.port}")
        self.written.append(data)

    def receive(self, data: bytes) -> None:
        if self.on_data:
            self.on_data(data)


class AdapterFactory:
    def __init__(self):
        self.failing: Set[str] = set()
        self.created: List[FakeSerialAdapter] = []

    def __call__(self, port: str) -> FakeSerialAdapter:
        adapter = FakeSerialAdapter(port, fail_open=port in self.failing)
        self.created.append(adapter)
        return adapter


@pytest.fixture
def adapter_factory():
    return AdapterFactory()


@pytest.fixture
def fake_adapter():
    adapter = FakeSerialAdapter("/dev/ttyTEST")
    adapter.is_connected = True
    return adapter


@pytest.fixture
def wait_until():
    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        async def poll():
            while not condition():
                await asyncio.sleep(0.005)
        await asyncio.wait_for(poll(), timeout)
    return wait

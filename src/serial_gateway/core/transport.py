import asyncio
from typing import Optional

from ..adapters.uart import UARTAdapter
from ..models.config import UARTConfig
from ..models.messages import OutboundMessage
from ..protocol.framing import create_framer, encode_outbound, describe_outbound
from ..utils.exceptions import WriteFailure
from ..utils.logging import get_logger
from .event_manager import EventManager

logger = get_logger(__name__)

FRAME_EVENT = "uart.frame"


class Transport:
    """
    Framed duplex channel over the current serial port.

    Outbound messages are encoded on enqueue and written by a ticker task at most one per
    send interval, so the device is never sent more than it can process. Inbound bytes are cut
    into frames which are queued on the event manager for the sequential worker.
    """

    def __init__(self, uart: UARTConfig, event_manager: EventManager, multiplexed: bool = False,
                 send_interval: float = 0.05, debug_mode: bool = False):
        self.uart = uart
        self.event_manager = event_manager
        self.multiplexed = multiplexed
        self.send_interval = send_interval
        self.debug_mode = debug_mode
        self.framer = create_framer(uart.pipe, uart.delim, uart.rxlength)
        self.adapter: Optional[UARTAdapter] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task] = None

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def attach(self, adapter: UARTAdapter) -> None:
        self.framer.reset()
        self.adapter = adapter
        adapter.on_data = self.data_received

    def detach(self) -> int:
        """Forget the port; anything still queued for it is discarded"""
        if self.adapter:
            self.adapter.on_data = None
        self.adapter = None
        self.framer.reset()
        discarded = self.clear()
        if discarded:
            logger.info(f"Discarded {discarded} queued UART messages")
        return discarded

    def clear(self) -> int:
        discarded = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            discarded += 1
        return discarded

    def write(self, message: OutboundMessage) -> None:
        """Add a message to the FIFO send queue, never blocks"""
        buffer = encode_outbound(message, self.uart.txlength, self.multiplexed)
        if self.debug_mode:
            logger.info(f"Added to UART send queue: 0x{message.address or 'ffff'}:{message.payload!r}")
        self._queue.put_nowait((buffer, message))

    def send_next(self) -> bool:
        """Write the oldest queued message; returns False when nothing was sent"""
        if self._queue.empty() or not self.adapter or not self.adapter.is_connected:
            return False
        buffer, message = self._queue.get_nowait()
        self._send(buffer, message)
        return True

    def _send(self, buffer: bytes, message: OutboundMessage) -> None:
        address, text = describe_outbound(buffer, self.multiplexed, message.internal)
        try:
            self.adapter.write(buffer)
        except WriteFailure as e:
            # Dropped, never retried
            logger.error(f"UART write error: {e}")
            return
        if not message.publish:
            return
        if not self.multiplexed:
            logger.info(f"Sent '{text}' to connected SensorTag")
        else:
            logger.info(f"Sent '{text}' to 0x{address}")

    def data_received(self, data: bytes) -> None:
        for frame in self.framer.feed(data):
            self.event_manager.publish_nowait(FRAME_EVENT, frame)

    async def _run_sender(self) -> None:
        while True:
            await asyncio.sleep(self.send_interval)
            self.send_next()

    async def start(self) -> None:
        if self._sender_task is None or self._sender_task.done():
            self._sender_task = asyncio.create_task(self._run_sender())

    async def stop(self) -> None:
        if self._sender_task and not self._sender_task.done():
            self._sender_task.cancel()
            try:
                await self._sender_task
            except asyncio.CancelledError:
                pass
        self._sender_task = None

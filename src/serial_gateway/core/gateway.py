import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from ..adapters.uart import UARTAdapter, available_ports
from ..models.config import GatewayConfig
from ..models.messages import LinkStatus, ConnectionState, OutboundMessage
from ..protocol.decoder import Decoder
from ..protocol.framing import is_control_frame
from ..utils.exceptions import PortUnavailableError
from ..utils.logging import get_logger
from .dispatcher import ForwardingDispatcher
from .event_manager import EventManager
from .handshake import Handshake, TIMEOUT_EVENT, is_challenge_response
from .heartbeat import HeartbeatMonitor, TICK_EVENT, is_heartbeat_reply
from .port_supervisor import PortSupervisor, AdapterFactory
from .session import SessionRouter
from .transport import Transport, FRAME_EVENT

logger = get_logger(__name__)

CLOSED_EVENT = "port.closed"


class Gateway:
    """
    Owns every piece of protocol state for one serial link: the current port, the blacklist,
    handshake and heartbeat flags, and the per-device sessions.

    All frames, timer expiries and port closures are handled by the event manager's single
    worker, so none of that state needs locking.
    """

    def __init__(self, config: GatewayConfig, dispatcher: ForwardingDispatcher,
                 event_manager: Optional[EventManager] = None,
                 adapter_factory: Optional[AdapterFactory] = None,
                 list_ports: Callable[[], List[str]] = available_ports,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.uart = config.effective_uart
        self.multiplexed = config.is_server
        self.dispatcher = dispatcher
        self.event_manager = event_manager or EventManager()
        self.link = LinkStatus()
        self.adapter: Optional[UARTAdapter] = None
        self.is_running = False

        self.transport = Transport(
            self.uart,
            self.event_manager,
            multiplexed=self.multiplexed,
            send_interval=config.send_interval / 1000,
            debug_mode=config.debug_mode,
        )
        self.supervisor = PortSupervisor(config.ports, adapter_factory or self._create_adapter, list_ports)
        self.handshake = Handshake(
            self.transport,
            self.event_manager,
            self.supervisor,
            self.link,
            self.close_port,
            timeout=config.handshake_timeout / 1000,
        )
        self.heartbeat = HeartbeatMonitor(
            self.transport,
            self.event_manager,
            self.link,
            interval=config.heartbeat_interval / 1000,
            clock=clock,
        )
        self.decoder = Decoder(
            config.registry(),
            internal_topic=config.internal_topic,
            token_separator=config.token_separator,
            value_separator=config.value_separator,
        )
        self.router = SessionRouter(
            [topic for topic in config.topics if topic in config.active_topics],
            max_rows=config.max_session_rows,
            multiplexed=self.multiplexed,
            address_timeout=config.connected_address_timeout / 1000,
            clock=clock,
        )
        self._closed = asyncio.Event()
        self._worker_task: Optional[asyncio.Task] = None

    def _create_adapter(self, port: str) -> UARTAdapter:
        return UARTAdapter(port, baudrate=self.uart.baudrate)

    async def initialize(self) -> None:
        logger.info("Initializing serial gateway")
        await self.event_manager.subscribe(FRAME_EVENT, self._handle_frame)
        await self.event_manager.subscribe(TIMEOUT_EVENT, self.handshake.on_timeout)
        await self.event_manager.subscribe(TICK_EVENT, self._handle_heartbeat_tick)
        await self.event_manager.subscribe(CLOSED_EVENT, self._handle_port_closed)
        self._worker_task = asyncio.create_task(self.event_manager.process_events())
        await self.transport.start()

    async def run(self) -> None:
        """Keep a validated serial link open until stopped or no port is left"""
        self.is_running = True
        while self.is_running:
            self.link.state = ConnectionState.CONNECTING
            try:
                adapter = await self.supervisor.acquire()
            except PortUnavailableError as e:
                logger.error(f"Serial ports exhausted: {e}")
                self.link.reset()
                self.is_running = False
                raise
            self._open_link(adapter)
            await self._closed.wait()
            if self.is_running:
                await asyncio.sleep(self.config.ports.retry_delay)

    def _open_link(self, adapter: UARTAdapter) -> None:
        self.adapter = adapter
        adapter.on_close = self._on_port_closed
        self._closed.clear()
        self.link.port = adapter.port
        self.transport.attach(adapter)
        self.handshake.begin()

    def _on_port_closed(self, exc: Optional[Exception]) -> None:
        self.event_manager.publish_nowait(CLOSED_EVENT, exc)

    async def close_port(self) -> None:
        if self.adapter:
            await self.adapter.disconnect()

    async def _handle_port_closed(self, exc: Optional[Exception]) -> None:
        # A new connection starts from scratch: no queued writes, no timers, no handshake state
        self.handshake.cancel()
        self.heartbeat.stop()
        self.transport.detach()
        self.link.reset()
        self.link.port = None
        self.adapter = None
        self._closed.set()

    async def _handle_frame(self, frame: bytes) -> None:
        if self.config.debug_mode:
            logger.info(f"UART: {frame!r}")

        if is_control_frame(frame):
            if self.handshake.handle_frame(frame):
                self.heartbeat.start()
            elif is_heartbeat_reply(frame):
                self.heartbeat.record()
            elif not is_challenge_response(frame):
                logger.debug(f"Unknown control frame: {frame!r}")
            return

        if not self.link.is_connected:
            logger.debug("Frame received before the handshake completed, dropped")
            return

        result = self.decoder.decode(frame)
        for error in result.errors:
            logger.warning(f"Field decode error: {error}")

        address = (result.address or "") if self.multiplexed else ""

        # The same ping can reach the server tag over several interfaces; it is answered once
        if "ping" in result.commands:
            if not self.multiplexed or self.router.accept_reply(address, frame):
                self.send(OutboundMessage(payload=str(result.commands["ping"]), address=address or None))

        actions = self.router.ingest(address, result.fields, session=result.session)
        for action in actions:
            await self.dispatcher.dispatch(action)

    async def _handle_heartbeat_tick(self, _: Any = None) -> None:
        self.heartbeat.probe()
        if self.multiplexed:
            self.router.expire()

    def send(self, message: OutboundMessage) -> bool:
        """Queue a message for the device; refused while no device is validated"""
        if not self.link.is_connected:
            logger.error("Sending aborted. SensorTag isn't connected.")
            return False
        self.transport.write(message)
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.link.state.value,
            "port": self.link.port,
            "identity": self.link.identity,
            "connected_at": self.link.connected_at.isoformat() if self.link.connected_at else None,
            "multiplexed": self.multiplexed,
            "blacklist": sorted(self.supervisor.blacklist),
            "failures": self.supervisor.failures,
            "queued": self.transport.queued,
            "sessions": len(self.router.sessions),
            "published": self.dispatcher.published,
            "publish_failures": self.dispatcher.failed,
        }

    async def stop(self) -> None:
        self.is_running = False
        self.handshake.cancel()
        self.heartbeat.stop()
        await self.close_port()
        self._closed.set()
        await self.transport.stop()
        if self._worker_task and not self._worker_task.done():
            await self.event_manager.stop()
            await self._worker_task
        logger.info("Serial gateway stopped")

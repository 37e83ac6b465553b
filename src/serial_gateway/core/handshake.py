import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..models.messages import ConnectionState, LinkStatus, OutboundMessage
from ..protocol.framing import CHALLENGE, CHALLENGE_RESPONSE, control_type, is_control_frame
from ..utils.exceptions import HandshakeTimeoutError
from ..utils.logging import get_logger
from .event_manager import EventManager
from .port_supervisor import PortSupervisor
from .transport import Transport

logger = get_logger(__name__)

TIMEOUT_EVENT = "handshake.timeout"


def is_challenge_response(frame: bytes) -> bool:
    return is_control_frame(frame) and control_type(frame) == CHALLENGE_RESPONSE


class Handshake:
    """
    Challenge-response exchange run on every freshly opened port.

    The challenge is queued like any other message and a timer is armed. If the device does not
    answer before the timer fires the port is reported as failed and closed.
    """

    def __init__(self, transport: Transport, event_manager: EventManager, supervisor: PortSupervisor,
                 link: LinkStatus, close_port: Callable[[], Awaitable[None]], timeout: float = 3.0):
        self.transport = transport
        self.event_manager = event_manager
        self.supervisor = supervisor
        self.link = link
        self.close_port = close_port
        self.timeout = timeout
        self.responded = False
        self._attempt = 0
        self._timer: Optional[asyncio.Task] = None

    def begin(self) -> None:
        self.cancel()
        self._attempt += 1
        self.responded = False
        self.transport.write(OutboundMessage(payload=CHALLENGE, internal=True, publish=False))
        self.link.state = ConnectionState.AWAITING_CHALLENGE_RESPONSE
        self._timer = asyncio.create_task(self._expire(self._attempt))

    async def _expire(self, attempt: int) -> None:
        await asyncio.sleep(self.timeout)
        await self.event_manager.publish(TIMEOUT_EVENT, attempt)

    def handle_frame(self, frame: bytes) -> bool:
        """Accept a challenge response; returns True when it validated the link"""
        if not is_challenge_response(frame):
            return False
        if self.link.state != ConnectionState.AWAITING_CHALLENGE_RESPONSE:
            logger.debug(f"Challenge response in state {self.link.state.value}, ignored")
            return False
        identity = frame[3:].rstrip(b"\x00").decode("ascii", errors="replace")
        logger.info(f"Challenge response: {identity}")
        self.supervisor.clear_blacklist()
        self.responded = True
        self.link.state = ConnectionState.CONNECTED
        self.link.identity = identity
        self.link.connected_at = datetime.now()
        self.cancel()
        return True

    async def on_timeout(self, attempt: int) -> None:
        if attempt != self._attempt or self.responded:
            return
        error = HandshakeTimeoutError(f"No response to challenge on {self.link.port} within {self.timeout}s")
        logger.info(f"{error}. Disconnecting.")
        if self.link.port:
            self.supervisor.report_failure(self.link.port, error)
        await self.close_port()

    def cancel(self) -> None:
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = None

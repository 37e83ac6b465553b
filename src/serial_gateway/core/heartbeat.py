import asyncio
import time
from typing import Callable, Optional

from ..models.messages import ConnectionState, LinkStatus, OutboundMessage
from ..protocol.framing import HEARTBEAT_PROBE, HEARTBEAT_REPLY, control_type, is_control_frame
from ..utils.logging import get_logger
from .event_manager import EventManager
from .transport import Transport

logger = get_logger(__name__)

TICK_EVENT = "heartbeat.tick"


def is_heartbeat_reply(frame: bytes) -> bool:
    return is_control_frame(frame) and control_type(frame) == HEARTBEAT_REPLY


def in_suspect_window(elapsed: float, interval: float) -> bool:
    """True when exactly one heartbeat went missing: 1.5 < elapsed/interval < 2.5"""
    return interval * 1.5 < elapsed < interval * 2.5


class HeartbeatMonitor:
    """
    Crash detection for the connected device.

    A probe is queued every interval. The device answers with heartbeat replies; before each
    probe the time since the last reply is checked. A crash is therefore noticed at the probe
    after the first missed reply, and reported once.
    """

    def __init__(self, transport: Transport, event_manager: EventManager, link: LinkStatus,
                 interval: float = 15.0, clock: Callable[[], float] = time.monotonic):
        self.transport = transport
        self.event_manager = event_manager
        self.link = link
        self.interval = interval
        self.clock = clock
        self.last_heartbeat = clock()
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    def reset(self) -> None:
        self.last_heartbeat = self.clock()

    def record(self) -> None:
        self.last_heartbeat = self.clock()
        if self.link.state == ConnectionState.SUSPECT:
            logger.info("Heartbeat: device responding again")
            self.link.state = ConnectionState.CONNECTED

    def check(self) -> bool:
        elapsed = self.clock() - self.last_heartbeat
        if in_suspect_window(elapsed, self.interval):
            logger.error("Heartbeat: the device has possibly crashed!")
            self.link.state = ConnectionState.SUSPECT
            return True
        return False

    def probe(self) -> None:
        if not self.link.is_connected:
            return
        self.check()
        self.transport.write(OutboundMessage(payload=HEARTBEAT_PROBE, internal=True, publish=False))

    async def _run(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.interval)
            await self.event_manager.publish(TICK_EVENT)

    def start(self) -> None:
        self.stop()
        self.reset()
        self.is_running = True
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        self.is_running = False
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

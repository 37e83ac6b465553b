import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..models.messages import DecodedField, PublishAction
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeviceSession:
    """
    Fields received from one device and not forwarded yet.

    Fields are buffered whether or not a session was started; active only records that the
    device announced one, and a session end flushes the buffer either way.
    """
    address: str
    rows: List[DecodedField] = field(default_factory=list)
    # Fields received after the row cap was reached, merged by name
    overflow: Dict[str, DecodedField] = field(default_factory=dict)
    active: bool = False
    last_seen: float = 0.0

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def merged(self) -> Dict[str, DecodedField]:
        merged: Dict[str, DecodedField] = {}
        for decoded in self.rows:
            merged[decoded.target_name] = decoded
        merged.update(self.overflow)
        return merged

    def take(self, topics: Set[str]) -> Dict[str, DecodedField]:
        """Remove and return the merged fields belonging to any of the topics"""
        taken = {name: decoded for name, decoded in self.merged().items() if decoded.topics & topics}
        self.rows = [decoded for decoded in self.rows if decoded.target_name not in taken]
        for name in taken:
            self.overflow.pop(name, None)
        return taken

    def clear(self) -> None:
        self.rows.clear()
        self.overflow.clear()
        self.active = False


class SessionRouter:
    """
    Per-device accumulation and flush policy.

    Non-forced fields are buffered per address. A forced field flushes the buffered fields of its
    topics immediately; a session end flushes everything and forgets the session. In multiplexed
    mode accept_reply tells whether a reply to a frame was already sent within the address
    timeout, and sessions of addresses that went quiet for longer are dropped.
    """

    def __init__(self, topics: Iterable[str], max_rows: int = 4500, multiplexed: bool = False,
                 address_timeout: float = 10.0, clock: Callable[[], float] = time.monotonic):
        self.topics: Tuple[str, ...] = tuple(topics)
        self.max_rows = max_rows
        self.multiplexed = multiplexed
        self.address_timeout = address_timeout
        self.clock = clock
        self.sessions: Dict[str, DeviceSession] = {}
        self._replies: Dict[Tuple[str, bytes], float] = {}

    def session_for(self, address: str, now: float) -> DeviceSession:
        session = self.sessions.get(address)
        if session is None:
            session = DeviceSession(address=address)
            self.sessions[address] = session
            logger.debug(f"New session for address {address!r}")
        session.last_seen = now
        return session

    def ingest(self, address: str, fields: List[DecodedField], session: Optional[bool] = None,
               now: Optional[float] = None) -> List[PublishAction]:
        now = self.clock() if now is None else now
        if self.multiplexed:
            self.expire(now)
        device = self.session_for(address, now)

        if session is True:
            if device.row_count or device.overflow:
                logger.warning(f"Session restarted for {address!r}, dropping {device.row_count} buffered rows")
            device.clear()
            device.active = True
            logger.info(f"Session started for {address!r}")
        elif fields and not device.active and not device.rows and not device.overflow:
            logger.debug(f"Buffering fields for {address!r} outside of a session")

        forced: List[DecodedField] = []
        for decoded in fields:
            if not decoded.topics & set(self.topics):
                logger.debug(f"No active topic for {decoded.target_name}, not forwarded")
                continue
            if decoded.force_send:
                forced.append(decoded)
            else:
                self._merge(device, decoded)

        actions = []
        if forced:
            actions.extend(self._flush_forced(device, forced))
        if session is False:
            actions.extend(self.end_session(address))
        return actions

    def _merge(self, device: DeviceSession, decoded: DecodedField) -> None:
        if device.row_count < self.max_rows:
            device.overflow.pop(decoded.target_name, None)
            device.rows.append(decoded)
        else:
            if not device.overflow:
                logger.warning(f"Session of {device.address!r} reached {self.max_rows} rows, "
                               f"further fields are merged without being counted")
            device.overflow[decoded.target_name] = decoded

    def _flush_forced(self, device: DeviceSession, forced: List[DecodedField]) -> List[PublishAction]:
        topics: Set[str] = set()
        for decoded in forced:
            topics |= decoded.topics & set(self.topics)
        pending = device.take(topics)
        for decoded in forced:
            pending[decoded.target_name] = decoded

        actions = []
        for topic in self.topics:
            if topic not in topics:
                continue
            record = {name: d.value for name, d in pending.items() if topic in d.topics}
            actions.append(PublishAction(topic=topic, address=device.address, record=record))
        return actions

    def end_session(self, address: str) -> List[PublishAction]:
        """Flush everything buffered for the address and forget its session"""
        device = self.sessions.pop(address, None)
        if device is None:
            return []
        merged = device.merged()
        actions = []
        for topic in self.topics:
            record = {name: d.value for name, d in merged.items() if topic in d.topics}
            if not record:
                continue
            rows = [{d.target_name: d.value} for d in device.rows if topic in d.topics]
            actions.append(PublishAction(topic=topic, address=address, record=record, rows=rows))
        logger.info(f"Session ended for {address!r} with {device.row_count} rows")
        return actions

    def accept_reply(self, address: str, frame: bytes, now: Optional[float] = None) -> bool:
        """False when the same reply from the same address was already seen within the timeout"""
        now = self.clock() if now is None else now
        self._replies = {key: seen for key, seen in self._replies.items()
                         if now - seen < self.address_timeout}
        key = (address, frame)
        if key in self._replies:
            logger.debug(f"Duplicate reply from {address!r} suppressed")
            return False
        self._replies[key] = now
        return True

    def expire(self, now: Optional[float] = None) -> List[str]:
        """Drop sessions of addresses not heard from within the timeout"""
        now = self.clock() if now is None else now
        if self.address_timeout <= 0:
            return []
        expired = [address for address, device in self.sessions.items()
                   if address and now - device.last_seen > self.address_timeout]
        for address in expired:
            del self.sessions[address]
            logger.info(f"Address {address} timed out, session cleared")
        return expired

    def snapshot(self) -> List[Dict[str, Any]]:
        return [
            {
                "address": device.address,
                "active": device.active,
                "rows": device.row_count,
                "pending": sorted(device.merged()),
            }
            for device in self.sessions.values()
        ]

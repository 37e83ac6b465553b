from typing import Callable, List, Optional, Set

from ..adapters.uart import UARTAdapter, available_ports
from ..models.config import PortsConfig
from ..utils.exceptions import CommunicationError, PortUnavailableError
from ..utils.logging import get_logger

logger = get_logger(__name__)

AdapterFactory = Callable[[str], UARTAdapter]


class PortSupervisor:
    """
    Finds and opens the serial port of the device.

    Ports that failed to open or failed the handshake are blacklisted so a dead device is not
    retried in a loop. The blacklist is only cleared once some device answers the challenge.
    """

    def __init__(self, config: PortsConfig, adapter_factory: AdapterFactory,
                 list_ports: Callable[[], List[str]] = available_ports):
        self.config = config
        self.adapter_factory = adapter_factory
        self.list_ports = list_ports
        self.blacklist: Set[str] = set()
        self.failures = 0
        self.current: Optional[str] = None
        self.last_error: Optional[Exception] = None

    def candidates(self) -> List[str]:
        if not self.config.autofind:
            return [self.config.port] if self.config.port else []
        return [port for port in self.list_ports() if port not in self.blacklist]

    async def acquire(self) -> UARTAdapter:
        """Open the next usable port, raising PortUnavailableError when none is left"""
        if not self.config.autofind:
            return await self._open_static()

        while self.failures < self.config.max_tries:
            candidates = self.candidates()
            if not candidates:
                break
            port = candidates[0]
            adapter = self.adapter_factory(port)
            try:
                await adapter.connect()
            except CommunicationError as e:
                logger.warning(f"Failed to open {port}: {e}")
                self.report_failure(port, e)
                continue
            self.current = port
            return adapter

        self.current = None
        raise PortUnavailableError(
            f"No serial ports available after {self.failures} failed attempts "
            f"(blacklisted: {sorted(self.blacklist)})"
        ) from self.last_error

    async def _open_static(self) -> UARTAdapter:
        port = self.config.port
        if not port:
            raise PortUnavailableError("Port autofind is disabled and no static port is configured")
        if self.failures >= self.config.max_tries:
            raise PortUnavailableError(f"{port} failed validation {self.failures} times") from self.last_error
        adapter = self.adapter_factory(port)
        try:
            await adapter.connect()
        except CommunicationError as e:
            raise PortUnavailableError(f"Configured port {port} is unavailable: {e}") from e
        self.current = port
        return adapter

    def report_failure(self, port: str, error: Optional[Exception] = None) -> None:
        self.failures += 1
        self.last_error = error
        if self.config.autofind:
            self.blacklist.add(port)
        logger.info(f"Port {port} failed ({self.failures}/{self.config.max_tries})")

    def clear_blacklist(self) -> None:
        if self.blacklist:
            logger.info(f"Clearing port blacklist: {sorted(self.blacklist)}")
        self.blacklist.clear()
        self.failures = 0
        self.last_error = None

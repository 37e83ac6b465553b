# Abstract base class for the gateway's I/O adapters
# The serial link (uart.py) and the broker connection (mqtt.py) implement this interface

from abc import ABC, abstractmethod
from typing import Any


class CommunicationAdapter(ABC):
    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def read_data(self) -> Any:
        pass

    @abstractmethod
    async def write_data(self, data: Any) -> None:
        pass

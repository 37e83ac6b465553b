# Central event handling system
import asyncio
import traceback
from typing import Any, Awaitable, Callable, Dict, List

from ..utils.logging import get_logger

logger = get_logger(__name__)

EventCallback = Callable[[Any], Awaitable[None]]

_STOP = object()


# The event manager is the gateway's single sequential worker: frames, timer expiries and port
# closures are queued here and handled one at a time, in arrival order.
class EventManager:
    def __init__(self):
        # Stores callbacks for each event type
        self.subscribers: Dict[str, List[EventCallback]] = {}
        self.event_queue: asyncio.Queue = asyncio.Queue()

    async def publish(self, event_type: str, data: Any = None) -> None:
        await self.event_queue.put((event_type, data))

    def publish_nowait(self, event_type: str, data: Any = None) -> None:
        """Queue an event from synchronous code such as protocol callbacks"""
        self.event_queue.put_nowait((event_type, data))

    async def subscribe(self, event_type: str, callback: EventCallback) -> None:
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    async def dispatch(self, event_type: str, data: Any) -> None:
        for callback in self.subscribers.get(event_type, []):
            try:
                await callback(data)
            except Exception:
                logger.error(f"Error handling {event_type} event: {traceback.format_exc()}")

    async def process_events(self) -> None:
        while True:
            item = await self.event_queue.get()
            try:
                if item is _STOP:
                    break
                event_type, data = item
                await self.dispatch(event_type, data)
            finally:
                self.event_queue.task_done()

    async def stop(self) -> None:
        await self.event_queue.put(_STOP)

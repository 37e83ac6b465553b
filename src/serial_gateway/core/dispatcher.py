import traceback
from typing import Any, Dict, List, Optional, Protocol

from ..models.messages import PublishAction
from ..utils.exceptions import CommunicationError
from ..utils.logging import get_logger

logger = get_logger(__name__)


class PublishSink(Protocol):
    async def publish_record(self, topic: str, payload: Dict[str, Any]) -> None:
        ...


class ForwardingDispatcher:
    """
    Hands decoded records to the publish sinks.

    Publishing is fire-and-forget: a failing sink is logged and never stops ingestion. With
    mute_connection_error only the first connectivity error of an outage is logged as a warning.
    """

    def __init__(self, sinks: Optional[List[PublishSink]] = None, mute_connection_error: bool = False,
                 offline: bool = False):
        self.sinks: List[PublishSink] = list(sinks or [])
        self.mute_connection_error = mute_connection_error
        self.offline = offline
        self.published = 0
        self.failed = 0
        self._outage = False

    def add_sink(self, sink: PublishSink) -> None:
        self.sinks.append(sink)

    async def dispatch(self, action: PublishAction) -> None:
        await self.publish(action.topic, action.to_payload())

    async def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        if self.offline or not self.sinks:
            logger.info(f"[{topic}] {payload}")
            return
        for sink in self.sinks:
            try:
                await sink.publish_record(topic, payload)
            except CommunicationError as e:
                self.failed += 1
                if self.mute_connection_error and self._outage:
                    logger.debug(f"Broker unreachable: {e}")
                else:
                    logger.warning(f"Broker unreachable: {e}")
                self._outage = True
            except Exception:
                self.failed += 1
                logger.error(f"Failed to publish to {topic}: {traceback.format_exc()}")
            else:
                self.published += 1
                if self._outage:
                    logger.info("Broker reachable again")
                    self._outage = False

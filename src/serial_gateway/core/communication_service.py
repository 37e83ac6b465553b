from typing import Dict, Any, Optional
from ..adapters.mqtt import MQTTAdapter
from ..handlers.mqtt_handlers import MQTTMessageHandlers
from ..utils.logging import get_logger
from ..utils.exceptions import CommunicationError
from .dispatcher import ForwardingDispatcher

logger = get_logger(__name__)


class CommunicationService:
    """Owns the network side of the gateway: the MQTT sink and the downlink subscription"""

    def __init__(self, communication_config: Dict[str, Any], dispatcher: ForwardingDispatcher,
                 handlers: Optional[MQTTMessageHandlers] = None):
        self.communication_config = communication_config
        self.dispatcher = dispatcher
        self.handlers = handlers
        self.mqtt: Optional[MQTTAdapter] = None

    async def initialize(self) -> None:
        logger.info("Initializing Communication Service")
        mqtt_config = self.communication_config.get('mqtt')
        if not mqtt_config or not mqtt_config.get('enabled', True):
            logger.warning("MQTT disabled, records will only be logged")
            return

        try:
            self.mqtt = MQTTAdapter(mqtt_config)
            if self.handlers and self.mqtt.config.downlink_topic:
                await self.mqtt.subscribe(self.mqtt.config.downlink_topic, self.handlers.downlink_handler)
            await self.mqtt.connect()
            # The broker may still be unreachable; records queue up until it is
            self.dispatcher.add_sink(self.mqtt)
            logger.info("MQTT service started")
        except CommunicationError as e:
            logger.error(f"Failed to initialize MQTT service: {str(e)}")
            if self.mqtt:
                await self.mqtt.disconnect()
            raise

    async def shutdown(self) -> None:
        logger.info("Shutting down communication services")
        if self.mqtt:
            await self.mqtt.disconnect()

from typing import Any
import json
from pydantic import ValidationError
from ..core.gateway import Gateway
from ..models.messages import OutboundMessage
from ..utils.logging import get_logger

logger = get_logger(__name__)


class MQTTMessageHandlers:
    def __init__(self, gateway: Gateway):
        self.gateway = gateway

    async def downlink_handler(self, topic: str, payload: Any) -> None:
        """Relay a backend message to a tag
        Expected payload format: {"address": "01a2", "message": "text"}
        A missing or null address broadcasts in multiplexed mode.
        """
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError:
                logger.error(f"Invalid JSON payload: {payload}")
                return

        if not isinstance(payload, dict) or 'message' not in payload:
            logger.error(f"Invalid payload format: {payload}")
            return

        try:
            message = OutboundMessage(payload=str(payload['message']), address=payload.get('address'))
        except ValidationError as e:
            logger.error(f"Invalid downlink message on {topic}: {e}")
            return

        if self.gateway.send(message):
            logger.debug(f"Downlink from {topic} queued for 0x{message.address or 'ffff'}")

# src/serial_gateway/api/routes.py
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Any, Dict, List
from ..models.messages import OutboundMessage
from ..utils.logging import get_logger
from .dependencies import GatewayDependency

logger = get_logger(__name__)

gateway_router = APIRouter()


class DownlinkRequest(BaseModel):
    message: str


'''
# Queue a message for a tag, "ffff" broadcasts in multiplexed mode
response = await client.post("/api/v1/devices/01a2/messages", json={"message": "hello"})
'''

@gateway_router.get("/gateway/status")
async def get_status(gateway: GatewayDependency) -> Dict[str, Any]:
    return gateway.status()


@gateway_router.get("/gateway/sessions")
async def get_sessions(gateway: GatewayDependency) -> List[Dict[str, Any]]:
    return gateway.router.snapshot()


@gateway_router.post("/devices/{address}/messages", status_code=202)
async def send_message(address: str, request: DownlinkRequest, gateway: GatewayDependency) -> Dict[str, str]:
    try:
        message = OutboundMessage(payload=request.message, address=address)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not gateway.send(message):
        raise HTTPException(
            status_code=503,
            detail="No validated device connected"
        )
    return {
        "status": "queued",
        "address": message.address,
    }

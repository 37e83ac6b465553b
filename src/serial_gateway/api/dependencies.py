# src/serial_gateway/api/dependencies.py
from fastapi import Request
from typing import Annotated
from fastapi import Depends
from ..core.gateway import Gateway


async def get_gateway(request: Request) -> Gateway:
    return request.app.state.components.gateway

# Type definitions for dependencies
GatewayDependency = Annotated[Gateway, Depends(get_gateway)]

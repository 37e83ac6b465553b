import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.exceptions import FieldDecodeError

BROADCAST_ADDRESS = "ffff"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE_RESPONSE = "awaiting_challenge_response"
    CONNECTED = "connected"
    SUSPECT = "suspect"


@dataclass
class LinkStatus:
    """Connection state shared by the port supervisor, handshake and heartbeat"""
    state: ConnectionState = ConnectionState.DISCONNECTED
    port: Optional[str] = None
    identity: Optional[str] = None
    connected_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.state in (ConnectionState.CONNECTED, ConnectionState.SUSPECT)

    def reset(self, state: ConnectionState = ConnectionState.DISCONNECTED) -> None:
        self.state = state
        self.identity = None
        self.connected_at = None


class OutboundMessage(BaseModel):
    """Message queued for the serial device"""
    payload: str
    address: Optional[str] = Field(None, description="4 hex digits, None for broadcast")
    internal: bool = Field(False, description="Raw protocol message, never address prefixed")
    publish: bool = Field(True, description="Log the send result")

    @field_validator('address')
    def validate_address(cls, v):
        if v is None:
            return v
        if not re.fullmatch(r"[0-9a-fA-F]{1,4}", v):
            raise ValueError(f"Address {v} is not 4 hex digits")
        return v.lower()


@dataclass(frozen=True)
class DecodedField:
    target_name: str
    value: Any
    topics: FrozenSet[str]
    force_send: bool = False


@dataclass
class DecodeResult:
    address: Optional[str] = None
    fields: List[DecodedField] = field(default_factory=list)
    commands: Dict[str, Any] = field(default_factory=dict)
    errors: List[FieldDecodeError] = field(default_factory=list)

    @property
    def session(self) -> Optional[bool]:
        return self.commands.get("session")


@dataclass
class PublishAction:
    topic: str
    address: str
    record: Dict[str, Any]
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"address": self.address or None, "data": self.record}
        if self.rows:
            payload["rows"] = self.rows
        return payload

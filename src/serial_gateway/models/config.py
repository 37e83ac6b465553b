from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .schema import FieldDescriptor, SchemaRegistry, build_parser, PARSER_KINDS


class UARTConfig(BaseModel):
    """Serial link and framing parameters"""
    baudrate: int = Field(9600, description="Serial baud rate")
    pipe: Literal["delimiter", "length"] = Field("delimiter", description="Inbound frame parser")
    delim: int = Field(0x00, ge=0, le=255, description="Frame delimiter byte")
    rxlength: int = Field(82, gt=0, description="Inbound frame length in length mode")
    txlength: int = Field(80, gt=3, description="Outbound buffer length")


class PortsConfig(BaseModel):
    autofind: bool = Field(True, description="Scan serial ports for a device")
    max_tries: int = Field(5, gt=0, description="Consecutive failures before giving up")
    port: Optional[str] = Field(None, description="Static port used when autofind is disabled")
    retry_delay: float = Field(1.0, ge=0, description="Seconds between connection attempts")


class APIConfig(BaseModel):
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8000


class FieldSpec(BaseModel):
    """Configuration form of a FieldDescriptor"""
    short_name: str
    target_name: str
    topics: List[str]
    force_send: bool = False
    parser: str = "number"
    slot: Optional[int] = None
    label: Optional[str] = None

    @field_validator('parser')
    def validate_parser(cls, v):
        if v not in PARSER_KINDS:
            raise ValueError(f"Unknown parser kind {v}, expected one of {sorted(PARSER_KINDS)}")
        return v

    def to_descriptor(self) -> FieldDescriptor:
        return FieldDescriptor(
            short_name=self.short_name,
            target_name=self.target_name,
            topics=frozenset(self.topics),
            force_send=self.force_send,
            parse=build_parser(self.parser, self.label or self.target_name, self.slot),
        )


DEFAULT_TOPICS = ["event", "tamaActions", "additionalMessages", "sensordata", "commands"]

DEFAULT_FIELDS: List[Dict[str, Any]] = [
    {"short_name": "time", "target_name": "timeStamp", "topics": ["event", "sensordata"],
     "label": "timestamp"},
    {"short_name": "id", "target_name": "sensortagID", "topics": ["event", "additionalMessages"],
     "parser": "hex_id", "label": "SensorTag ID"},
    {"short_name": "ping", "target_name": "ping", "topics": ["commands"], "parser": "pong"},
    {"short_name": "session", "target_name": "session", "topics": ["commands"],
     "parser": "session", "label": "Session"},
    {"short_name": "EAT", "target_name": "eat", "topics": ["tamaActions"],
     "parser": "increment", "slot": 0, "label": "EAT increment"},
    {"short_name": "EXERCISE", "target_name": "exercise", "topics": ["tamaActions"],
     "parser": "increment", "slot": 1, "label": "EXERCISE increment"},
    {"short_name": "PET", "target_name": "pet", "topics": ["tamaActions"],
     "parser": "increment", "slot": 2, "label": "PET increment"},
    {"short_name": "ACTIVATE", "target_name": "ACTIVATE", "topics": ["tamaActions"],
     "parser": "triple", "label": "ACTIVATE increment"},
    {"short_name": "MSG1", "target_name": "msg1", "topics": ["additionalMessages"],
     "force_send": True, "parser": "text"},
    {"short_name": "MSG2", "target_name": "msg2", "topics": ["additionalMessages"],
     "force_send": True, "parser": "text"},
    {"short_name": "temp", "target_name": "temperature", "topics": ["sensordata"]},
    {"short_name": "humid", "target_name": "humidity", "topics": ["sensordata"]},
    {"short_name": "press", "target_name": "pressure", "topics": ["sensordata"]},
    {"short_name": "light", "target_name": "lightIntensity", "topics": ["sensordata"],
     "label": "light intensity"},
    {"short_name": "ax", "target_name": "ax", "topics": ["sensordata"], "label": "acceleration (x)"},
    {"short_name": "ay", "target_name": "ay", "topics": ["sensordata"], "label": "acceleration (y)"},
    {"short_name": "az", "target_name": "az", "topics": ["sensordata"], "label": "acceleration (z)"},
    {"short_name": "gx", "target_name": "gx", "topics": ["sensordata"], "label": "gyroscope (x)"},
    {"short_name": "gy", "target_name": "gy", "topics": ["sensordata"], "label": "gyroscope (y)"},
    {"short_name": "gz", "target_name": "gz", "topics": ["sensordata"], "label": "gyroscope (z)"},
]


class GatewayConfig(BaseModel):
    """Validated gateway configuration"""
    uart: UARTConfig = Field(default_factory=UARTConfig)
    # UART overrides applied in multiplexed (server) mode
    server: Dict[str, Any] = Field(
        default_factory=lambda: {"baudrate": 57600, "pipe": "delimiter", "delim": 0xF2})
    ports: PortsConfig = Field(default_factory=PortsConfig)
    is_server: bool = Field(False, description="Multiplexed mode through a server tag")
    debug_mode: bool = False
    offline: bool = Field(False, description="Do not forward records, only log them")
    mute_connection_error: bool = False
    heartbeat_interval: int = Field(15000, gt=0, description="Milliseconds between probes")
    handshake_timeout: int = Field(3000, gt=0, description="Milliseconds to await a challenge response")
    send_interval: int = Field(50, gt=0, description="Milliseconds between outbound writes")
    connected_address_timeout: int = Field(10000, ge=0, description="Reply dedup window in milliseconds")
    max_session_rows: int = Field(4500, gt=0)
    topics: List[str] = Field(default_factory=lambda: list(DEFAULT_TOPICS))
    internal_topic: str = "commands"
    token_separator: str = ","
    value_separator: str = ":"
    field_schema: List[FieldSpec] = Field(
        default_factory=lambda: [FieldSpec(**f) for f in DEFAULT_FIELDS])
    communication: Dict[str, Any] = Field(default_factory=dict)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_fields(self):
        # Builds the registry once so duplicate short names fail at load time
        self.registry()
        for spec in self.field_schema:
            unknown = set(spec.topics) - set(self.topics)
            if unknown:
                raise ValueError(f"Field {spec.short_name} uses unknown topics: {sorted(unknown)}")
        return self

    @property
    def effective_uart(self) -> UARTConfig:
        """UART settings in effect, with server overrides applied in multiplexed mode"""
        if not self.is_server:
            return self.uart
        return UARTConfig(**{**self.uart.model_dump(), **self.server})

    @property
    def active_topics(self) -> frozenset:
        return frozenset(t for t in self.topics if t != self.internal_topic)

    def registry(self) -> SchemaRegistry:
        return SchemaRegistry(spec.to_descriptor() for spec in self.field_schema)

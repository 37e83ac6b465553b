import asyncio
from typing import Dict, Any, Callable, Optional, Union, List
from pydantic import BaseModel, Field
import aiomqtt as mqtt
from aiomqtt import Will
import json
import traceback
from ..adapters.base import CommunicationAdapter
from ..utils.logging import get_logger
from ..utils.exceptions import CommunicationError, PublishError
from contextlib import asynccontextmanager
import random
import ssl

logger = get_logger(__name__)

'''
usage Examples

await mqtt_adapter.connect()
await mqtt_adapter.subscribe("gateway/downlink", message_handler)

await mqtt_adapter.publish({
    "topic": "gateway/sensordata",
    "payload": {"address": "01a2", "data": {"temperature": 23.5}},
    "qos": 1
})

await mqtt_adapter.disconnect()

'''


class MQTTConfig(BaseModel):
    """MQTT configuration model"""
    enabled: bool = Field(True, description="Forward records to the broker")
    host: str = Field(..., description="MQTT broker hostname")
    port: int = Field(1883, description="MQTT broker port")
    username: Optional[str] = Field(None, description="MQTT username")
    password: Optional[str] = Field(None, description="MQTT password")
    keepalive: int = Field(60, description="Connection keepalive in seconds")
    client_id: str = Field("serial_gateway", description="MQTT client ID")
    ssl: bool = Field(False, description="Enable SSL/TLS")
    reconnect_interval: float = Field(5.0, description="Reconnection interval in seconds")
    max_publish_attempts: int = Field(3, description="Attempts before a queued record is dropped")
    ca_cert: Optional[str] = Field(None, description="Custom CA certificate")
    client_cert: Optional[str] = Field(None, description="Client certificate")
    client_key: Optional[str] = Field(None, description="Required if client_cert is set")
    verify_hostname: bool = Field(True, description="Verify broker's hostname")
    tls_version: Optional[str] = Field(None, description="TLS1_2, TLS1_3, etc.")
    subscribe_qos: int = Field(0, description="qos for subscribe topics")
    publish_qos: int = Field(0, description="qos for publish message")
    clean_session: bool = Field(False, description="persistent sessions with clean_session=False")
    topic_prefix: str = Field("gateway/", description="Prefix added to every record topic")
    downlink_topic: Optional[str] = Field(None, description="Topic carrying messages for the tags")
    publish_queue_size: int = Field(1000, description="Maximum number of queued records")


class MQTTMessage(BaseModel):
    """MQTT message model"""
    topic: str
    payload: Union[dict, str, bytes]
    qos: int = Field(0, ge=0, le=2)
    retain: bool = False


class MQTTAdapter(CommunicationAdapter):
    def __init__(self, config: Dict[str, Any]):
        """Initialize MQTT adapter with configuration"""
        try:
            self.config = MQTTConfig(**config)
            self.config.keepalive = max(30, self.config.keepalive)
        except Exception as e:
            raise CommunicationError(f"Invalid MQTT configuration: {str(e)}")

        self.client: Optional[mqtt.Client] = None
        self.message_handlers: Dict[str, List[Callable]] = {}
        self.connected = asyncio.Event()
        self._stop_flag = asyncio.Event()
        self._connection_task: Optional[asyncio.Task] = None
        self._publisher_task: Optional[asyncio.Task] = None
        self._publish_queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.publish_queue_size)

    def _create_tls_context(self) -> Optional[ssl.SSLContext]:
        """Create SSL context for MQTT connection based on config"""
        if not self.config.ssl:
            return None

        context = ssl.create_default_context()
        if self.config.ca_cert:
            context.load_verify_locations(cafile=self.config.ca_cert)

        if self.config.client_cert:
            if not self.config.client_key:
                raise ValueError("Client key must be provided when using client certificate")
            context.load_cert_chain(
                certfile=self.config.client_cert,
                keyfile=self.config.client_key
            )

        if self.config.tls_version:
            context.minimum_version = getattr(ssl.TLSVersion, self.config.tls_version.upper(),
                                        ssl.TLSVersion.TLSv1_2)

        context.check_hostname = self.config.verify_hostname
        return context

    @asynccontextmanager
    async def _get_client(self):
        """Context manager for an MQTT client with online/offline status"""
        will = Will(
            topic=f"{self.config.client_id}/status",
            payload="Offline",
            qos=self.config.subscribe_qos,
            retain=True)

        async with mqtt.Client(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username,
            password=self.config.password,
            keepalive=self.config.keepalive,
            identifier=f"{self.config.client_id}_{random.randint(1000, 9999)}",
            clean_session=self.config.clean_session,
            will=will,
            tls_context=self._create_tls_context()
        ) as client:
            self.client = client
            self.connected.set()
            try:
                await client.publish(
                    f"{self.config.client_id}/status",
                    payload="Online",
                    qos=1,
                    retain=True
                )
                for topic in self.message_handlers:
                    await client.subscribe(topic, qos=self.config.subscribe_qos)
                    logger.info(f"Subscribed to topic: {topic}")
                logger.info(f"Connected to MQTT broker with client ID: {self.config.client_id}")
                yield client
            finally:
                self.connected.clear()
                self.client = None
                logger.info("Disconnected from MQTT broker")

    async def _maintain_connection(self) -> None:
        """Keep a broker connection open and hand incoming messages to the handlers"""
        attempt = 0
        while not self._stop_flag.is_set():
            try:
                async with self._get_client() as client:
                    attempt = 0
                    async for message in client.messages:
                        await self._handle_message(str(message.topic), message.payload)
            except asyncio.CancelledError:
                break
            except Exception:
                attempt += 1
                # Exponential backoff for reconnection attempts
                wait_time = min(self.config.reconnect_interval * (2 ** (attempt - 1)), 60)
                logger.error(f"MQTT connection attempt {attempt} failed, retrying in {wait_time} seconds: "
                             f"{traceback.format_exc()}")
                await asyncio.sleep(wait_time)

    async def _handle_message(self, topic: str, raw: bytes) -> None:
        payload: Any = raw.decode() if isinstance(raw, (bytes, bytearray)) else raw
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, TypeError):
            pass  # Keep payload as string if not JSON

        for handler in self.message_handlers.get(topic, []):
            try:
                await handler(topic, payload)
            except Exception as e:
                logger.error(f"Error in message handler for topic {topic}: {str(e)}")

    async def _publish_worker(self):
        """Worker task to handle publishing messages from queue"""
        while not self._stop_flag.is_set():
            try:
                message = await self._publish_queue.get()
            except asyncio.CancelledError:
                break
            attempt = 0
            try:
                while attempt < self.config.max_publish_attempts and not self._stop_flag.is_set():
                    try:
                        if not self.client or not self.connected.is_set():
                            raise CommunicationError("Not connected to MQTT broker")
                        await self.client.publish(
                            topic=message.topic,
                            payload=message.payload,
                            qos=message.qos,
                            retain=message.retain
                        )
                        logger.debug(f"Published to {message.topic}")
                        break
                    except CommunicationError as e:
                        attempt += 1
                        if attempt >= self.config.max_publish_attempts:
                            logger.warning(f"Dropping message for {message.topic} after {attempt} attempts: {e}")
                            break
                        await asyncio.sleep(self.config.reconnect_interval)
                    except Exception as e:
                        attempt += 1
                        logger.error(f"Publish attempt {attempt} to {message.topic} failed: {str(e)}")
                        await asyncio.sleep(1)
            except asyncio.CancelledError:
                break
            finally:
                self._publish_queue.task_done()

    async def connect(self) -> None:
        """Start broker connection and publishing tasks"""
        try:
            self._stop_flag.clear()
            self._connection_task = asyncio.create_task(self._maintain_connection())
            self._publisher_task = asyncio.create_task(self._publish_worker())
        except Exception as e:
            raise CommunicationError(f"Failed to start MQTT adapter: {str(e)}")

    async def disconnect(self) -> None:
        """Disconnect from MQTT broker and cleanup"""
        self._stop_flag.set()
        for task in (self._connection_task, self._publisher_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self.connected.clear()
        logger.info("MQTT adapter stopped")

    async def subscribe(self, topic: str, handler: Callable[[str, Any], Any]) -> None:
        """Register a handler; the topic is subscribed on every (re)connection"""
        if topic not in self.message_handlers:
            self.message_handlers[topic] = []
            if self.client and self.connected.is_set():
                try:
                    await self.client.subscribe(topic, qos=self.config.subscribe_qos)
                except Exception as e:
                    raise CommunicationError(f"Failed to subscribe to topic {topic}: {str(e)}")
        self.message_handlers[topic].append(handler)

    async def publish(self, message: Union[MQTTMessage, Dict[str, Any]]) -> None:
        """Queue message for publishing"""
        if isinstance(message, dict):
            message = MQTTMessage(**message)

        payload = message.payload
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        if isinstance(payload, str):
            payload = payload.encode()

        try:
            self._publish_queue.put_nowait(MQTTMessage(
                topic=message.topic,
                payload=payload,
                qos=message.qos,
                retain=message.retain
            ))
        except asyncio.QueueFull:
            raise PublishError(f"Publish queue full, dropping message for {message.topic}")

        if not self.connected.is_set():
            raise CommunicationError("Broker unreachable, message queued")

    async def write_data(self, data: Dict[str, Any]) -> None:
        """Write data to MQTT (alias for publish)"""
        await self.publish(data)

    async def read_data(self) -> Dict[str, Any]:
        """Not implemented for MQTT - using callbacks instead"""
        raise NotImplementedError("MQTT adapter uses callbacks for reading data")

    async def publish_record(self, topic: str, payload: Dict[str, Any]) -> None:
        """Publish sink entry point used by the forwarding dispatcher"""
        await self.publish({
            "topic": f"{self.config.topic_prefix}{topic}",
            "payload": payload,
            "qos": self.config.publish_qos,
        })

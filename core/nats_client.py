"""
NATS JetStream Client for Python Microservices
Provides event-driven communication between services.

Thin wrapper around nats-py: JetStream publishing with per-domain streams
and durable pull consumers for subscriptions.
"""

import asyncio
import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING

import nats
from nats.errors import TimeoutError as NATSTimeoutError
from nats.js.errors import BadRequestError

if TYPE_CHECKING:
    from core.config_manager import ConfigManager


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and date types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (date, datetime)):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class ServiceSource(Enum):
    """Service sources"""

    MEMBERSHIP_SERVICE = "membership_service"
    MEMBER_SERVICE = "member_service"
    INVOICE_SERVICE = "invoice_service"
    SCHEDULER = "scheduler"
    GATEWAY = "api_gateway"


class Event:
    """Event envelope"""

    def __init__(
        self,
        event_type: Union[Enum, str],
        source: Union[Enum, str],
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value if isinstance(event_type, Enum) else event_type
        self.source = source.value if isinstance(source, Enum) else source
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """
    NATS JetStream event bus.

    Streams are named after the first subject token ("contract.signed" is
    stored in "contract-stream").
    """

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        if config is None:
            config = ConfigManager(service_name)

        self.servers = config.infra.nats_servers

        self._nc = None
        self._js = None
        self._known_streams: Dict[str, bool] = {}
        self._subscriptions: Dict[str, bool] = {}  # pattern -> active
        self._subscription_tasks: List[asyncio.Task] = []

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=[self.servers], name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    def _get_stream_name_for_event(self, event_type: str) -> str:
        prefix = event_type.split('.')[0]
        return f"{prefix}-stream"

    async def _ensure_stream(self, stream_name: str, subjects: List[str]) -> None:
        if self._known_streams.get(stream_name):
            return
        try:
            await self._js.add_stream(name=stream_name, subjects=subjects, max_msgs=100000)
        except BadRequestError as e:
            # Stream already exists with a different configuration
            logger.debug(f"Stream creation note for {stream_name}: {e}")
        self._known_streams[stream_name] = True

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        Returns:
            True when the broker acknowledged the message
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            stream_name = self._get_stream_name_for_event(subject)
            await self._ensure_stream(stream_name, [f"{subject.split('.')[0]}.>"])

            ack = await self._js.publish(subject, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def subscribe_to_events(
        self, pattern: str, handler: Callable, durable: Optional[str] = None
    ) -> Optional[str]:
        """
        Subscribe to events with a pattern using a durable pull consumer.

        Args:
            pattern: Subject pattern to subscribe to (e.g., "member.deleted")
            handler: Async callback receiving an Event
            durable: Optional durable name for the consumer
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return None

        self._subscriptions[pattern] = True
        task = asyncio.create_task(self._jetstream_consumer_loop(pattern, handler, durable))
        self._subscription_tasks.append(task)

        logger.info(f"Subscribed to {pattern} (JetStream consumer)")
        return durable or pattern

    async def _jetstream_consumer_loop(self, pattern: str, handler: Callable, durable: Optional[str]):
        prefix = pattern.split('.')[0]
        stream_name = self._get_stream_name_for_event(prefix)
        consumer_name = durable or f"{prefix}-consumer"

        logger.info(f"Starting JetStream consumer: stream={stream_name}, consumer={consumer_name}, pattern={pattern}")

        try:
            await self._ensure_stream(stream_name, [f"{prefix}.>"])
            psub = await self._js.pull_subscribe(pattern, durable=consumer_name, stream=stream_name)

            while self._subscriptions.get(pattern, False):
                try:
                    messages = await psub.fetch(batch=10, timeout=1)
                except NATSTimeoutError:
                    continue
                except Exception as pull_e:
                    logger.warning(f"Pull error (will retry): {pull_e}")
                    await asyncio.sleep(5)
                    continue

                for msg in messages:
                    try:
                        data = json.loads(msg.data.decode())
                        if 'type' in data and 'source' in data and 'data' in data:
                            event = Event.from_dict(data)
                        else:
                            event = Event(event_type=msg.subject, source="unknown", data=data, subject=msg.subject)
                        await handler(event)
                        await msg.ack()
                    except Exception as msg_e:
                        logger.error(f"Error processing message on {msg.subject}: {msg_e}")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"JetStream consumer loop error for {pattern}: {e}")
        finally:
            self._subscriptions[pattern] = False
            logger.info(f"JetStream consumer stopped: {consumer_name}")

    async def unsubscribe(self, pattern: str) -> bool:
        if pattern in self._subscriptions:
            self._subscriptions[pattern] = False
            return True
        return False

    async def close(self):
        """Stop consumers and drain the connection"""
        for pattern in list(self._subscriptions.keys()):
            self._subscriptions[pattern] = False

        for task in self._subscription_tasks:
            if not task.done():
                task.cancel()

        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None

        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional["ConfigManager"] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional ConfigManager instance for service discovery

    Returns:
        Connected NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, config=config)
        await bus.connect()
        _event_bus = bus

    return _event_bus


__all__ = [
    "DecimalEncoder",
    "Event",
    "NATSEventBus",
    "ServiceSource",
    "get_event_bus",
]

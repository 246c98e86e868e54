"""Live-update channel.

Events are published after a calendar write commits and tell subscribers
that something changed. Delivery is at-least-once and unordered, so
consumers re-fetch instead of applying payloads.
"""

import asyncio
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from agenda.core.errors import TransientError
from agenda.core.redis import RedisClient, redis_client, redis_enabled
from agenda.schemas.events import LiveEvent

logger = structlog.get_logger(__name__)

CHANNEL_PREFIX = "agenda"


def business_channel(business_id: int) -> str:
    return f"{CHANNEL_PREFIX}:business:{business_id}"


def customer_channel(customer_ref: str) -> str:
    return f"{CHANNEL_PREFIX}:customer:{customer_ref}"


def channels_for(event: LiveEvent) -> list[str]:
    channels = []
    if event.business_id is not None:
        channels.append(business_channel(event.business_id))
    if event.customer_ref:
        channels.append(customer_channel(event.customer_ref))
    return channels


class Subscription:
    async def next_event(self, timeout: Optional[float] = None) -> Optional[LiveEvent]:
        """Wait for the next event; None when ``timeout`` elapses first."""
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class EventBroker:
    async def publish(self, event: LiveEvent) -> int:
        raise NotImplementedError

    async def subscribe(self, *channels: str) -> Subscription:
        raise NotImplementedError


class InMemorySubscription(Subscription):
    def __init__(self, broker: "InMemoryEventBroker", channels: tuple[str, ...]):
        self.broker = broker
        self.channels = channels
        self.queue: asyncio.Queue[LiveEvent] = asyncio.Queue()

    async def next_event(self, timeout: Optional[float] = None) -> Optional[LiveEvent]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        await self.broker._unregister(self)


class InMemoryEventBroker(EventBroker):
    """Fan-out inside one process, one queue per subscriber."""

    def __init__(self):
        self._subscribers: dict[str, set[InMemorySubscription]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: LiveEvent) -> int:
        async with self._lock:
            targets = set()
            for channel in channels_for(event):
                targets |= self._subscribers.get(channel, set())

        for subscription in targets:
            subscription.queue.put_nowait(event)

        logger.debug(
            "Live event published",
            event_type=event.type.value,
            business_id=event.business_id,
            receivers=len(targets),
        )
        return len(targets)

    async def subscribe(self, *channels: str) -> InMemorySubscription:
        subscription = InMemorySubscription(self, channels)
        async with self._lock:
            for channel in channels:
                self._subscribers.setdefault(channel, set()).add(subscription)
        return subscription

    async def _unregister(self, subscription: InMemorySubscription) -> None:
        async with self._lock:
            for channel in subscription.channels:
                subscribers = self._subscribers.get(channel)
                if subscribers is None:
                    continue
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[channel]


class RedisSubscription(Subscription):
    def __init__(self, pubsub):
        self.pubsub = pubsub

    async def next_event(self, timeout: Optional[float] = None) -> Optional[LiveEvent]:
        try:
            message = await self.pubsub.get_message(
                ignore_subscribe_messages=True, timeout=timeout
            )
        except (RedisError, ConnectionError) as e:
            logger.warning("Live channel read failed", error=str(e))
            raise TransientError("Live update channel disconnected") from e

        if message is None:
            return None
        try:
            return LiveEvent.model_validate_json(message["data"])
        except PydanticValidationError:
            logger.warning("Dropping malformed live event", channel=message.get("channel"))
            return None

    async def close(self) -> None:
        try:
            await self.pubsub.unsubscribe()
            await self.pubsub.aclose()
        except RedisError as e:
            logger.warning("Live channel close failed", error=str(e))


class RedisEventBroker(EventBroker):
    """Redis pub/sub fan-out across API workers."""

    def __init__(self, client: Optional[RedisClient] = None):
        self.client = client or redis_client

    async def publish(self, event: LiveEvent) -> int:
        data = event.model_dump_json()
        receivers = 0
        try:
            for channel in channels_for(event):
                receivers += await self.client.publish(channel, data)
        except (RedisError, ConnectionError) as e:
            logger.error(
                "Failed to publish live event",
                event_type=event.type.value,
                error=str(e),
            )
            raise TransientError("Live update channel unavailable") from e
        return receivers

    async def subscribe(self, *channels: str) -> RedisSubscription:
        try:
            conn = await self.client.get_redis()
            pubsub = conn.pubsub()
            await pubsub.subscribe(*channels)
        except (RedisError, ConnectionError) as e:
            logger.warning("Live channel subscribe failed", error=str(e))
            raise TransientError("Live update channel unavailable") from e
        return RedisSubscription(pubsub)


_default_broker: Optional[EventBroker] = None


def get_event_broker() -> EventBroker:
    global _default_broker
    if _default_broker is None:
        _default_broker = (
            RedisEventBroker() if redis_enabled() else InMemoryEventBroker()
        )
    return _default_broker

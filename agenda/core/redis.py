import json
from typing import Any, Optional

import redis.asyncio as redis
import structlog

from agenda.core.config import settings

logger = structlog.get_logger(__name__)

REDIS_DISABLED_URL = "memory://"


def redis_enabled(url: Optional[str] = None) -> bool:
    url = (url if url is not None else settings.REDIS_URL) or ""
    return bool(url.strip()) and url.strip().lower() != REDIS_DISABLED_URL


class RedisClient:
    """Redis client shared by the calendar locks and the live-update channel."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis_pool = None

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
                health_check_interval=30,
            )

            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def publish(self, channel: str, message: Any) -> int:
        """Publish a JSON message; returns the number of receivers."""
        client = await self.get_redis()
        payload = json.dumps(message) if not isinstance(message, str) else message
        return await client.publish(channel, payload)

    async def close(self):
        if self.redis_pool is not None:
            await self.redis_pool.disconnect()
            self.redis_pool = None


# Global Redis client instance
redis_client = RedisClient()

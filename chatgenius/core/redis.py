"""Redis client for the change feed.

Every committed mutation made through the store gateway is published as a
JSON change event on ``changes:<table>``. Subscribers open one pub/sub
connection per table and filter events locally.
"""

import json
import logging
from collections.abc import AsyncIterator
from functools import lru_cache

import redis.asyncio as aioredis

from chatgenius.core.config import get_settings

logger = logging.getLogger(__name__)

CHANGE_FEED_PREFIX = "changes:"


@lru_cache
def get_redis_pool() -> aioredis.ConnectionPool:
    """Get the process-wide async Redis pool (created on first use)."""
    return aioredis.ConnectionPool.from_url(
        str(get_settings().redis_url),
        decode_responses=True,
    )


async def close_redis_pool() -> None:
    """Close the Redis connection pool on shutdown."""
    if get_redis_pool.cache_info().currsize:
        await get_redis_pool().disconnect()
        get_redis_pool.cache_clear()


def get_change_channel(table: str, prefix: str = CHANGE_FEED_PREFIX) -> str:
    """Get Redis channel name for a table's change events.

    Args:
        table: Storage collection name (e.g. 'messages')
        prefix: Channel prefix

    Returns:
        Channel name in format 'changes:{table}'
    """
    return f"{prefix}{table}"


async def publish_change_event(
    pool: aioredis.ConnectionPool,
    table: str,
    payload: dict,
    prefix: str = CHANGE_FEED_PREFIX,
) -> bool:
    """
    Publish a change event to the table's Redis channel.

    Non-blocking: catches and logs errors without raising, so a committed
    mutation is never reported as failed because of the change feed.

    Returns:
        True if the event was published, False otherwise.
    """
    try:
        channel = get_change_channel(table, prefix)
        data = json.dumps(payload, default=str)
        async with aioredis.Redis(connection_pool=pool) as client:
            await client.publish(channel, data)
        logger.debug(f"Published {payload.get('eventType')} to {channel}")
        return True
    except Exception as e:
        logger.warning(f"Failed to publish change event for {table}: {e}")
        return False


class RedisChangeFeed:
    """Pub/sub connection delivering raw change payloads for one table."""

    def __init__(
        self,
        pool: aioredis.ConnectionPool,
        table: str,
        prefix: str = CHANGE_FEED_PREFIX,
    ):
        self.channel = get_change_channel(table, prefix)
        self._client = aioredis.Redis(connection_pool=pool)
        self._pubsub = self._client.pubsub()

    async def open(self) -> None:
        """Subscribe to the channel; returns once Redis acknowledged it."""
        await self._pubsub.subscribe(self.channel)
        logger.info(f"Subscribed to channel: {self.channel}")

    async def events(self) -> AsyncIterator[dict]:
        """Yield decoded payloads until the feed is closed."""
        async for message in self._pubsub.listen():
            if message["type"] != "message":
                continue
            data = message["data"]
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                yield json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Dropping malformed change event on {self.channel}")

    async def close(self) -> None:
        await self._pubsub.unsubscribe(self.channel)
        await self._pubsub.aclose()
        await self._client.aclose()
        logger.info(f"Unsubscribed from channel: {self.channel}")

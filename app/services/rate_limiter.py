"""
Redis-backed fixed-window rate limiting for outbound notifications.
Keys are recipients (email address or phone number); every worker shares the same counters.
"""

import logging

import redis.asyncio as redis

from app.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "notification-limit"

redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """Get or create the shared Redis client. Connects lazily on first command."""
    global redis_client

    if redis_client is None:
        if "@" in settings.redis_url:
            protocol = settings.redis_url.split(":")[0]
            masked_url = f"{protocol}:****@{settings.redis_url.split('@')[-1]}"
        else:
            masked_url = settings.redis_url
        logger.info("Using Redis for notification rate limiting: %s", masked_url)
        redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
    return redis_client


async def close_redis_client() -> None:
    global redis_client

    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


class FixedWindowRateLimiter:
    def __init__(self, client: redis.Redis, limit: int, window_seconds: int, key_prefix: str = KEY_PREFIX) -> None:
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix

    def _key(self, recipient: str) -> str:
        return f"{self.key_prefix}:{recipient}"

    async def hit(self, recipient: str) -> bool:
        """Count one send for ``recipient``; False when the window is already full.

        Fails closed: if Redis cannot be reached the send is refused.
        """
        key = self._key(recipient)
        try:
            # INCR + TTL in one round trip; the first hit of a window sets the expiry
            async with self.client.pipeline(transaction=True) as pipe:
                count, ttl = await pipe.incr(key).ttl(key).execute()
            if ttl < 0:
                await self.client.expire(key, self.window_seconds)
        except redis.RedisError as e:
            logger.error("Rate limit check failed for %s, denying send: %s", recipient, e)
            return False
        if count > self.limit:
            logger.warning("Rate limit exceeded for %s (%d/%ds)", recipient, self.limit, self.window_seconds)
            return False
        return True

    async def remaining(self, recipient: str) -> int:
        count = await self.client.get(self._key(recipient))
        return max(self.limit - int(count or 0), 0)

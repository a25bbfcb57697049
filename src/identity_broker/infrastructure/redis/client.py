"""Redis Client for the Identity Broker

Provides async Redis client management for the shared OAuth state store.
"""

import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper

    Owned by the host application: call ``connect()`` at startup and
    ``disconnect()`` at shutdown.
    """

    def __init__(self, url: str):
        """Initialize Redis client

        Args:
            url: Redis URL (redis://[:password@]host:port/db)
        """
        self.url = url
        self._client: Optional[redis.Redis] = None

    async def connect(self):
        """Establish Redis connection"""
        if not self._client:
            self._client = redis.from_url(self.url, decode_responses=True)
            await self._client.ping()
            logger.info(f"Connected to Redis: {_redact(self.url)}")

    async def disconnect(self):
        """Close Redis connection"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Redis")

    def get_client(self) -> redis.Redis:
        """Get the underlying Redis client

        Returns:
            Redis client instance

        Raises:
            RuntimeError: If client not connected
        """
        if not self._client:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def health_check(self) -> bool:
        """Check Redis connection health

        Returns:
            True if Redis is responsive, False otherwise
        """
        try:
            if not self._client:
                return False
            await self._client.ping()
            return True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
            return False


def _redact(url: str) -> str:
    """Hide the password part of a Redis URL for logging."""
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"

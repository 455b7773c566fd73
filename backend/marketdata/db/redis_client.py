"""
MarketData Access Layer - Redis Client
"""
import redis.asyncio as redis
from loguru import logger


class RedisClient:
    """Async Redis client wrapper used as the shared cache store."""

    def __init__(self, url: str):
        self.url = url
        self._client: redis.Redis | None = None

    async def initialize(self):
        """Initialize Redis connection."""
        try:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self._client.ping()
            logger.info(f"✅ Redis connected: {self.url.split('@')[-1] if '@' in self.url else self.url}")
        except Exception as e:
            logger.error(f"❌ Redis connection failed: {e}")
            raise

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None
            logger.info("Redis connection closed")

    @property
    def client(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call initialize() first.")
        return self._client

    # =========================
    # Generic Cache Store Methods
    # =========================
    async def get(self, key: str) -> str | None:
        """Get value by key."""
        return await self.client.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        """Set value with optional expiry (in seconds). A non-positive expiry deletes the key."""
        if ex is not None and ex <= 0:
            await self.client.delete(key)
        elif ex is not None:
            await self.client.setex(key, ex, value)
        else:
            await self.client.set(key, value)
        return True

    async def exists(self, key: str) -> bool:
        """Check whether a key is present."""
        return await self.client.exists(key) > 0

    async def delete(self, *keys: str) -> int:
        """Delete keys, returning the number removed."""
        if not keys:
            return 0
        return await self.client.delete(*keys)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern."""
        deleted = 0
        async for key in self.client.scan_iter(match=pattern):
            deleted += await self.client.delete(key)
        return deleted

"""
Unit Tests - Redis Cache Store
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from marketdata.db.redis_client import RedisClient


@pytest.fixture
def redis_store() -> RedisClient:
    store = RedisClient("redis://localhost:6379/0")
    store._client = MagicMock()
    store._client.get = AsyncMock(return_value="cached")
    store._client.set = AsyncMock()
    store._client.setex = AsyncMock()
    store._client.exists = AsyncMock(return_value=1)
    store._client.delete = AsyncMock(return_value=1)
    return store


class TestRedisClient:

    def test_client_requires_initialize(self):
        with pytest.raises(RuntimeError):
            RedisClient("redis://localhost:6379/0").client

    @pytest.mark.asyncio
    async def test_set_with_expiry_uses_setex(self, redis_store):
        await redis_store.set("marketdata:quote:AAPL", "{}", ex=900)
        redis_store._client.setex.assert_awaited_once_with("marketdata:quote:AAPL", 900, "{}")
        redis_store._client.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_without_expiry(self, redis_store):
        await redis_store.set("k", "v")
        redis_store._client.set.assert_awaited_once_with("k", "v")

    @pytest.mark.asyncio
    async def test_get_and_exists(self, redis_store):
        assert await redis_store.get("k") == "cached"
        assert await redis_store.exists("k") is True

    @pytest.mark.asyncio
    async def test_delete_no_keys(self, redis_store):
        assert await redis_store.delete() == 0
        redis_store._client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_pattern_scans(self, redis_store):
        async def scan_iter(match=None):
            for key in ("marketdata:historical:AAPL:a", "marketdata:historical:AAPL:b"):
                yield key

        redis_store._client.scan_iter = scan_iter

        assert await redis_store.delete_pattern("marketdata:historical:AAPL:*") == 2
        assert redis_store._client.delete.await_count == 2

    @pytest.mark.asyncio
    async def test_close(self, redis_store):
        client = redis_store._client
        client.close = AsyncMock()
        await redis_store.close()
        client.close.assert_awaited_once()
        assert redis_store._client is None

    @pytest.mark.asyncio
    async def test_set_non_positive_expiry_deletes(self, redis_store):
        await redis_store.set("marketdata:quote:AAPL", "{}", ex=0)
        redis_store._client.delete.assert_awaited_once_with("marketdata:quote:AAPL")
        redis_store._client.setex.assert_not_awaited()
        redis_store._client.set.assert_not_awaited()

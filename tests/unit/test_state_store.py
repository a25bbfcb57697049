"""Unit tests for OAuth state stores

Redis is mocked with unittest.mock; no external services.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from identity_broker.core.auth import MemoryStateStore, PendingAuthorization, RedisStateStore


@pytest.fixture
def pending():
    return PendingAuthorization(strategy_name="github", issued_at=1700000000.0, link_user_id="user-1")


@pytest.fixture
def mock_redis():
    """Mock Redis client"""
    redis = AsyncMock()
    redis.setex = AsyncMock(return_value=True)
    redis.getdel = AsyncMock(return_value=None)
    return redis


@pytest.mark.unit
class TestMemoryStateStore:
    """Test in-process state bindings"""

    @pytest.mark.asyncio
    async def test_consume_once(self, pending):
        store = MemoryStateStore()
        await store.save("s1", pending, ttl_seconds=60)

        first = await store.consume("s1")
        second = await store.consume("s1")

        assert first == pending
        assert second is None

    @pytest.mark.asyncio
    async def test_unknown_state(self):
        assert await MemoryStateStore().consume("nope") is None

    @pytest.mark.asyncio
    async def test_expired_state(self, pending):
        store = MemoryStateStore()
        with patch("identity_broker.core.auth.state.time") as clock:
            clock.monotonic.return_value = 1000.0
            await store.save("s1", pending, ttl_seconds=60)
        with patch("identity_broker.core.auth.state.time") as clock:
            clock.monotonic.return_value = 1060.0
            assert await store.consume("s1") is None

    @pytest.mark.asyncio
    async def test_expired_states_purged_on_save(self, pending):
        store = MemoryStateStore()
        with patch("identity_broker.core.auth.state.time") as clock:
            clock.monotonic.return_value = 1000.0
            await store.save("old", pending, ttl_seconds=10)
        with patch("identity_broker.core.auth.state.time") as clock:
            clock.monotonic.return_value = 2000.0
            await store.save("new", pending, ttl_seconds=10)

        assert len(store) == 1


@pytest.mark.unit
class TestRedisStateStore:
    """Test Redis-backed state bindings"""

    @pytest.mark.asyncio
    async def test_save_uses_ttl(self, mock_redis, pending):
        store = RedisStateStore(mock_redis)

        await store.save("s1", pending, ttl_seconds=300)

        key, ttl, payload = mock_redis.setex.call_args.args
        assert key == "oauth_state:s1"
        assert ttl == 300
        assert json.loads(payload) == pending.to_dict()

    @pytest.mark.asyncio
    async def test_consume_uses_getdel(self, mock_redis, pending):
        mock_redis.getdel.return_value = json.dumps(pending.to_dict())
        store = RedisStateStore(mock_redis, key_prefix="test:")

        result = await store.consume("s1")

        mock_redis.getdel.assert_awaited_once_with("test:s1")
        assert result == pending

    @pytest.mark.asyncio
    async def test_consume_bytes_payload(self, mock_redis, pending):
        mock_redis.getdel.return_value = json.dumps(pending.to_dict()).encode()

        result = await RedisStateStore(mock_redis).consume("s1")

        assert result.link_user_id == "user-1"

    @pytest.mark.asyncio
    async def test_consume_missing(self, mock_redis):
        assert await RedisStateStore(mock_redis).consume("gone") is None

"""Unit tests for SessionManager

Time is controlled by the FakeClock fixture.
"""

from datetime import timedelta

import pytest

from identity_broker.domain.models import User
from identity_broker.services import SessionManager


@pytest.fixture
def user():
    return User(id="user-1", username="ada")


@pytest.fixture
def manager(memory_storage, clock):
    return SessionManager(memory_storage, session_duration_seconds=3600, clock=clock)


@pytest.mark.unit
class TestSessionLifecycle:
    """Test create/get/update/destroy"""

    @pytest.mark.asyncio
    async def test_create(self, manager, user, clock):
        """Happy path: session expires one duration after creation"""
        # Act
        session = await manager.create(user, {"theme": "dark"})

        # Assert
        assert session.user_id == "user-1"
        assert session.data == {"theme": "dark"}
        assert session.created_at == clock.now
        assert session.expires_at == clock.now + timedelta(hours=1)
        assert len(session.id) >= 32

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, manager, user):
        ids = {(await manager.create(user)).id for _ in range(20)}

        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_get_live_session(self, manager, user, clock):
        session = await manager.create(user)
        clock.advance(minutes=59)

        loaded = await manager.get(session.id)

        assert loaded.id == session.id

    @pytest.mark.asyncio
    async def test_expired_at_boundary(self, manager, user, clock):
        """Edge case: a session is absent at exactly its expiry instant"""
        session = await manager.create(user)
        clock.advance(hours=1)

        assert await manager.get(session.id) is None

    @pytest.mark.asyncio
    async def test_expired_not_deleted_is_still_absent(self, manager, memory_storage, user, clock):
        session = await manager.create(user)
        clock.advance(hours=2)

        assert await manager.get(session.id) is None
        assert await memory_storage.get_session(session.id) is not None

    @pytest.mark.asyncio
    async def test_get_unknown_or_empty(self, manager):
        assert await manager.get("nope") is None
        assert await manager.get("") is None
        assert await manager.get(None) is None

    @pytest.mark.asyncio
    async def test_update_replaces_data_without_extending(self, manager, user, clock):
        session = await manager.create(user, {"a": 1})
        clock.advance(minutes=30)

        updated = await manager.update(session.id, {"b": 2})

        assert updated.data == {"b": 2}
        assert updated.expires_at == session.expires_at

    @pytest.mark.asyncio
    async def test_update_expired(self, manager, user, clock):
        session = await manager.create(user)
        clock.advance(hours=1)

        assert await manager.update(session.id, {"b": 2}) is None

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, manager, user):
        session = await manager.create(user)

        await manager.destroy(session.id)
        await manager.destroy(session.id)

        assert await manager.get(session.id) is None

    @pytest.mark.asyncio
    async def test_reap_expired(self, manager, user, clock):
        stale = await manager.create(user)
        clock.advance(minutes=45)
        fresh = await manager.create(user)
        clock.advance(minutes=30)

        removed = await manager.reap_expired()

        assert removed == 1
        assert await manager.get(stale.id) is None
        assert await manager.get(fresh.id) is not None


@pytest.mark.unit
class TestWithoutStorage:
    """Sessions are issued but not persisted"""

    @pytest.mark.asyncio
    async def test_issued_not_retrievable(self, user):
        manager = SessionManager(None)

        session = await manager.create(user)

        assert session.id
        assert await manager.get(session.id) is None
        assert await manager.update(session.id, {}) is None
        assert await manager.reap_expired() == 0
        await manager.destroy(session.id)

    def test_default_duration_is_one_day(self):
        assert SessionManager(None).session_duration == timedelta(hours=24)

"""
Pytest configuration and fixtures for identity broker tests.

Provides fixtures for:
- Storage backends (in-memory and SQLite)
- A controllable clock
- A fake OAuth provider (httpx.MockTransport)
- A fully wired broker
"""

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Optional

import httpx
import pytest
import pytest_asyncio

from identity_broker.config.settings import (
    BearerStrategySpec,
    BrokerConfig,
    LocalStrategySpec,
    OAuthStrategyConfig,
    OAuthStrategySpec,
)
from identity_broker.core.auth import hash_password, verify_password
from identity_broker.domain.models import User
from identity_broker.infrastructure.storage import MemoryStorage, SQLStorage
from identity_broker.services import IdentityBroker

TEST_SECRET = "test-secret"
PROVIDER_URL = "https://provider.test"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider:
    """OAuth provider double serving /token and /user."""

    def __init__(self):
        self.token_status = 200
        self.token_body: Any = {
            "access_token": "at-123",
            "refresh_token": "rt-456",
            "expires_in": 3600,
        }
        self.profile_status = 200
        self.profile: Any = {"id": 42, "login": "octocat", "email": "octo@example.com"}
        self.requests: list[httpx.Request] = []
        # Returns a response to replace the default one, or None
        self.handler_override: Optional[Callable[[httpx.Request], Optional[httpx.Response]]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.handler_override is not None:
            response = self.handler_override(request)
            if response is not None:
                return response
        if request.url.path == "/token":
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path == "/user":
            return httpx.Response(self.profile_status, json=self.profile)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def oauth_config() -> OAuthStrategyConfig:
    return OAuthStrategyConfig(
        client_id="cid",
        client_secret="csecret",
        callback_url="http://h/cb",
        scope=["a", "b"],
        authorize_url=f"{PROVIDER_URL}/authorize",
        token_url=f"{PROVIDER_URL}/token",
        userinfo_url=f"{PROVIDER_URL}/user",
    )


@pytest.fixture
def local_users() -> dict[str, tuple[str, User]]:
    """username -> (bcrypt hash, user) known to the credential verifier"""
    return {
        "alice": (
            hash_password("wonderland", rounds=4),
            User(id="user-alice", username="alice", email="alice@example.com",
                 profile={"roles": ["admin"]}),
        ),
        "bob": (
            hash_password("builder", rounds=4),
            User(id="user-bob", username="bob", email="bob@example.com"),
        ),
    }


@pytest.fixture
def verifier(local_users):
    """Async credential verifier backed by ``local_users``"""

    async def verify(username: str, password: str) -> Optional[User]:
        entry = local_users.get(username)
        if entry is None or not verify_password(password, entry[0]):
            return None
        return entry[1]

    return verify


@pytest.fixture
def broker_config(oauth_config) -> BrokerConfig:
    return BrokerConfig(
        secret=TEST_SECRET,
        session_duration_seconds=3600,
        strategies=[
            LocalStrategySpec(name="local"),
            OAuthStrategySpec(name="example", config=oauth_config),
            BearerStrategySpec(name="jwt"),
        ],
    )


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest_asyncio.fixture
async def sql_storage(tmp_path) -> AsyncGenerator[SQLStorage, None]:
    """SQLite-backed storage with a fresh schema per test."""
    storage = SQLStorage(f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}", create_schema=True)
    await storage.init()
    yield storage
    await storage.drop_schema()
    await storage.close()


@pytest_asyncio.fixture
async def broker(broker_config, memory_storage, verifier, provider, clock) -> AsyncGenerator[IdentityBroker, None]:
    """Broker wired to in-memory storage and the fake provider."""
    broker = IdentityBroker(
        broker_config,
        storage=memory_storage,
        verifier=verifier,
        transport=provider.transport,
        clock=clock,
    )
    await broker.init()
    yield broker
    await broker.close()

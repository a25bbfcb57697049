"""OAuth state storage.

Each authorize redirect carries a fresh state token bound server-side to a
pending authorization. The callback consumes the binding exactly once, so an
unknown, expired or replayed state is rejected.

Storage Schema (Redis):
- oauth_state:{state} -> {pending_authorization_json} (TTL)
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass
class PendingAuthorization:
    """What a state token was issued for."""
    strategy_name: str
    issued_at: float
    link_user_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "strategy_name": self.strategy_name,
            "issued_at": self.issued_at,
            "link_user_id": self.link_user_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PendingAuthorization':
        return cls(
            strategy_name=data["strategy_name"],
            issued_at=data["issued_at"],
            link_user_id=data.get("link_user_id"),
        )


class StateStore(ABC):
    """Binds state tokens to pending authorizations."""

    @abstractmethod
    async def save(self, state: str, pending: PendingAuthorization, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def consume(self, state: str) -> Optional[PendingAuthorization]:
        """Return and forget the binding; None if unknown or expired."""
        pass


class MemoryStateStore(StateStore):
    """In-process state store

    WARNING: Only works for single-instance deployments! Use
    RedisStateStore when callbacks may land on another instance.
    """

    def __init__(self):
        self._states: dict[str, tuple[PendingAuthorization, float]] = {}
        self._lock = asyncio.Lock()

    async def save(self, state: str, pending: PendingAuthorization, ttl_seconds: int) -> None:
        async with self._lock:
            self._purge(time.monotonic())
            self._states[state] = (pending, time.monotonic() + ttl_seconds)

    async def consume(self, state: str) -> Optional[PendingAuthorization]:
        async with self._lock:
            entry = self._states.pop(state, None)
        if entry is None:
            return None
        pending, deadline = entry
        if time.monotonic() >= deadline:
            return None
        return pending

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, deadline) in self._states.items() if deadline <= now]
        for key in expired:
            del self._states[key]

    def __len__(self) -> int:
        return len(self._states)


class RedisStateStore(StateStore):
    """Redis-backed state store shared across broker instances."""

    def __init__(self, redis_client: Redis, key_prefix: str = "oauth_state:"):
        """Initialize state store

        Args:
            redis_client: Redis connection
            key_prefix: Key namespace for state bindings
        """
        self.redis = redis_client
        self.key_prefix = key_prefix

    async def save(self, state: str, pending: PendingAuthorization, ttl_seconds: int) -> None:
        await self.redis.setex(
            f"{self.key_prefix}{state}", ttl_seconds, json.dumps(pending.to_dict())
        )

    async def consume(self, state: str) -> Optional[PendingAuthorization]:
        # GETDEL makes the read-and-forget atomic, so a state redeems once
        raw = await self.redis.getdel(f"{self.key_prefix}{state}")
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return PendingAuthorization.from_dict(json.loads(raw))

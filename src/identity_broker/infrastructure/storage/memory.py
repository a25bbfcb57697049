"""In-memory storage backend.

Used for development, tests and single-process deployments. Records are
copied on the way in and out so callers never share mutable state with the
store. The link index is guarded by a lock, standing in for the unique
constraint a relational backend would provide.
"""

import asyncio
import copy
from datetime import datetime
from typing import Any, Optional

from identity_broker.domain.models import Session, StrategyLink, User, utc_now

from .base import DuplicateLinkError, StorageBackend

_USER_FIELDS = ("username", "email", "profile")


class MemoryStorage(StorageBackend):
    """Dictionary-backed storage."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._links: dict[str, StrategyLink] = {}
        self._link_index: dict[tuple[str, str], str] = {}
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    # Users
    async def create_user(self, user: User) -> User:
        stored = copy.deepcopy(user)
        stored.strategies = []
        self._users[user.id] = stored
        return await self.get_user(user.id)

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        if user is None:
            return None
        result = copy.deepcopy(user)
        result.strategies = await self.list_links(user_id)
        return result

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        user = self._users.get(user_id)
        if user is None:
            return None
        for key, value in changes.items():
            if key in _USER_FIELDS:
                setattr(user, key, copy.deepcopy(value))
        user.updated_at = utc_now()
        return await self.get_user(user_id)

    async def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    # Strategy links
    async def create_link(self, link: StrategyLink) -> StrategyLink:
        async with self._lock:
            self._insert_link(link)
        return copy.deepcopy(link)

    async def create_linked_user(self, user: User, link: StrategyLink) -> User:
        async with self._lock:
            if user.id in self._users:
                raise DuplicateLinkError(link.strategy_name, link.strategy_id)
            self._insert_link(link)
            stored = copy.deepcopy(user)
            stored.strategies = []
            self._users[user.id] = stored
        return await self.get_user(user.id)

    def _insert_link(self, link: StrategyLink) -> None:
        if link.key in self._link_index:
            raise DuplicateLinkError(link.strategy_name, link.strategy_id)
        self._link_index[link.key] = link.id
        self._links[link.id] = copy.deepcopy(link)

    async def get_link(self, strategy_name: str, strategy_id: str) -> Optional[StrategyLink]:
        link_id = self._link_index.get((strategy_name, strategy_id))
        if link_id is None:
            return None
        return copy.deepcopy(self._links[link_id])

    async def list_links(self, user_id: str) -> list[StrategyLink]:
        links = [copy.deepcopy(link) for link in self._links.values() if link.user_id == user_id]
        links.sort(key=lambda link: link.created_at)
        return links

    async def delete_link(self, user_id: str, strategy_name: str) -> int:
        async with self._lock:
            doomed = [
                link for link in self._links.values()
                if link.user_id == user_id and link.strategy_name == strategy_name
            ]
            for link in doomed:
                del self._links[link.id]
                self._link_index.pop(link.key, None)
        return len(doomed)

    # Sessions
    async def create_session(self, session: Session) -> Session:
        self._sessions[session.id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    async def get_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def update_session(self, session_id: str, data: dict[str, Any]) -> Optional[Session]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        session.data = copy.deepcopy(data)
        return copy.deepcopy(session)

    async def delete_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def delete_expired_sessions(self, now: datetime) -> int:
        expired = [sid for sid, session in self._sessions.items() if session.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

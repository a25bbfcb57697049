"""Storage collaborator interface.

The broker persists three record types (users, strategy links, sessions)
through this interface. Backends wrap their own driver errors in
``StorageError``; the one expected constraint violation, a duplicate
(strategy_name, strategy_id) link, is raised as ``DuplicateLinkError``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from identity_broker.domain.models import Session, StrategyLink, User


class StorageError(Exception):
    """Storage operation failed."""
    pass


class DuplicateLinkError(StorageError):
    """A link for (strategy_name, strategy_id) already exists."""

    def __init__(self, strategy_name: str, strategy_id: str):
        super().__init__(f"Link already exists: {strategy_name}:{strategy_id}")
        self.strategy_name = strategy_name
        self.strategy_id = strategy_id


class StorageBackend(ABC):
    """Async CRUD over users, strategy links and sessions."""

    async def init(self) -> None:
        """Prepare the backend (connect, create schema)."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    # Users
    @abstractmethod
    async def create_user(self, user: User) -> User:
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Load a user with its linked strategies."""
        pass

    @abstractmethod
    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        """Apply ``username``/``email``/``profile`` changes; None if absent."""
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        pass

    # Strategy links
    @abstractmethod
    async def create_link(self, link: StrategyLink) -> StrategyLink:
        """Insert a link.

        Raises:
            DuplicateLinkError: If (strategy_name, strategy_id) is taken
        """
        pass

    @abstractmethod
    async def create_linked_user(self, user: User, link: StrategyLink) -> User:
        """Insert a user and its first link atomically.

        Raises:
            DuplicateLinkError: If the link key or the user id is taken; nothing
                is stored
        """
        pass

    @abstractmethod
    async def get_link(self, strategy_name: str, strategy_id: str) -> Optional[StrategyLink]:
        pass

    @abstractmethod
    async def list_links(self, user_id: str) -> list[StrategyLink]:
        pass

    @abstractmethod
    async def delete_link(self, user_id: str, strategy_name: str) -> int:
        """Delete the user's links for a strategy; returns rows removed."""
        pass

    # Sessions
    @abstractmethod
    async def create_session(self, session: Session) -> Session:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[Session]:
        """Load a session by id, expired or not."""
        pass

    @abstractmethod
    async def update_session(self, session_id: str, data: dict[str, Any]) -> Optional[Session]:
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def delete_expired_sessions(self, now: datetime) -> int:
        """Delete sessions with ``expires_at <= now``; returns count."""
        pass

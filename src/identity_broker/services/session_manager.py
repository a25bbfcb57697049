"""Session Management

Purpose: Handle the lifecycle of server-side sessions

Key Features:
- Unguessable session identifiers (secrets.token_urlsafe)
- Fixed lifetime from configuration (24 hours by default)
- Lazy expiry: a session at or past its expiry instant is never returned,
  whether or not it has been deleted yet
- Bulk reaping of expired sessions

Session data updates are last-writer-wins and never extend expiry.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from identity_broker.config.settings import DEFAULT_SESSION_DURATION_SECONDS
from identity_broker.domain.models import Session, User, new_session_id, utc_now
from identity_broker.infrastructure.storage import StorageBackend

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, loads, mutates, expires and destroys sessions."""

    def __init__(
        self,
        storage: Optional[StorageBackend],
        session_duration_seconds: int = DEFAULT_SESSION_DURATION_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize session manager

        Args:
            storage: Storage collaborator; without one sessions are issued
                but never persisted
            session_duration_seconds: Lifetime of new sessions
            clock: Source of "now" (UTC, timezone-aware)
        """
        self.storage = storage
        self.session_duration = timedelta(seconds=session_duration_seconds)
        self.clock = clock

    async def create(self, user: User, data: Optional[dict[str, Any]] = None) -> Session:
        """Create and persist a session for a user

        Args:
            user: Owning user
            data: Initial session data

        Returns:
            Created session
        """
        now = self.clock()
        session = Session(
            id=new_session_id(),
            user_id=user.id,
            data=dict(data or {}),
            expires_at=now + self.session_duration,
            created_at=now,
        )

        if self.storage is not None:
            await self.storage.create_session(session)
        logger.info(f"Created session for user {user.id}")
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        """Load a live session; None if missing or expired."""
        if not session_id or self.storage is None:
            return None

        session = await self.storage.get_session(session_id)
        if session is None or session.is_expired(self.clock()):
            return None
        return session

    async def update(self, session_id: str, data: dict[str, Any]) -> Optional[Session]:
        """Replace a live session's data; None if missing or expired."""
        if self.storage is None or await self.get(session_id) is None:
            return None
        return await self.storage.update_session(session_id, dict(data))

    async def destroy(self, session_id: str) -> None:
        """Delete a session; deleting an absent session is not an error."""
        if not session_id or self.storage is None:
            return
        await self.storage.delete_session(session_id)

    async def reap_expired(self) -> int:
        """Remove sessions already past expiry

        Returns:
            Number of sessions cleaned up
        """
        if self.storage is None:
            return 0
        count = await self.storage.delete_expired_sessions(self.clock())
        logger.info(f"Session cleanup completed: {count} sessions cleaned")
        return count

"""
Relational storage backend (async SQLAlchemy).

Works with PostgreSQL (asyncpg) in production and SQLite (aiosqlite) in
development and tests.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from identity_broker.domain.models import (
    Session,
    StrategyLink,
    TokenBundle,
    User,
    parse_utc_timestamp,
    utc_now,
)

from .base import DuplicateLinkError, StorageBackend, StorageError
from .tables import Base, SessionRow, StrategyLinkRow, UserRow

logger = logging.getLogger(__name__)

_USER_FIELDS = ("username", "email", "profile")


def normalize_database_url(database_url: str) -> str:
    """Select the async driver for plain postgresql:// and sqlite:// URLs"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


class SQLStorage(StorageBackend):
    """SQLAlchemy-backed storage

    Tables:
    - auth_users: canonical users
    - user_strategies: links, unique on (strategy_name, strategy_id)
    - auth_sessions: sessions
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: bool = False,
        create_schema: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        """Initialize SQL storage

        Args:
            database_url: SQLAlchemy URL (ignored when ``engine`` is given)
            echo: Log emitted SQL
            create_schema: Create missing tables in ``init()``
            engine: Pre-built async engine
        """
        if engine is None:
            if not database_url:
                raise ValueError("SQLStorage requires database_url or engine")
            engine = create_async_engine(
                normalize_database_url(database_url),
                echo=echo,
                pool_pre_ping=True,  # Verify connections before using
            )
        self.engine = engine
        self.create_schema = create_schema
        self._sessionmaker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def init(self) -> None:
        if self.create_schema:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Broker tables created")

    async def close(self) -> None:
        await self.engine.dispose()

    async def drop_schema(self) -> None:
        """Drop all broker tables.

        WARNING: This will delete all data!
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._sessionmaker() as db:
            try:
                yield db
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Storage operation failed: {e}")
                raise StorageError(str(e)) from e

    # Users
    async def create_user(self, user: User) -> User:
        async with self._session() as db:
            db.add(_user_row(user))
            await db.commit()
        return await self.get_user(user.id)

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session() as db:
            row = await db.get(UserRow, user_id)
            if row is None:
                return None
            links = await self._select_links(db, user_id)
            return _to_user(row, links)

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        async with self._session() as db:
            row = await db.get(UserRow, user_id)
            if row is None:
                return None
            for key, value in changes.items():
                if key in _USER_FIELDS:
                    setattr(row, key, value)
            row.updated_at = utc_now()
            await db.commit()
        return await self.get_user(user_id)

    async def delete_user(self, user_id: str) -> bool:
        async with self._session() as db:
            result = await db.execute(delete(UserRow).where(UserRow.id == user_id))
            await db.commit()
            return result.rowcount > 0

    # Strategy links
    async def create_link(self, link: StrategyLink) -> StrategyLink:
        async with self._session() as db:
            db.add(_link_row(link))
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateLinkError(link.strategy_name, link.strategy_id) from e
        return await self.get_link(link.strategy_name, link.strategy_id)

    async def create_linked_user(self, user: User, link: StrategyLink) -> User:
        async with self._session() as db:
            try:
                db.add(_user_row(user))
                await db.flush()
                db.add(_link_row(link))
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateLinkError(link.strategy_name, link.strategy_id) from e
        return await self.get_user(user.id)

    async def get_link(self, strategy_name: str, strategy_id: str) -> Optional[StrategyLink]:
        async with self._session() as db:
            result = await db.execute(
                select(StrategyLinkRow).where(
                    StrategyLinkRow.strategy_name == strategy_name,
                    StrategyLinkRow.strategy_id == strategy_id,
                )
            )
            row = result.scalar_one_or_none()
            return _to_link(row) if row else None

    async def list_links(self, user_id: str) -> list[StrategyLink]:
        async with self._session() as db:
            return await self._select_links(db, user_id)

    async def _select_links(self, db: AsyncSession, user_id: str) -> list[StrategyLink]:
        result = await db.execute(
            select(StrategyLinkRow)
            .where(StrategyLinkRow.user_id == user_id)
            .order_by(StrategyLinkRow.created_at)
        )
        return [_to_link(row) for row in result.scalars().all()]

    async def delete_link(self, user_id: str, strategy_name: str) -> int:
        async with self._session() as db:
            result = await db.execute(
                delete(StrategyLinkRow).where(
                    StrategyLinkRow.user_id == user_id,
                    StrategyLinkRow.strategy_name == strategy_name,
                )
            )
            await db.commit()
            return result.rowcount

    # Sessions
    async def create_session(self, session: Session) -> Session:
        async with self._session() as db:
            db.add(
                SessionRow(
                    id=session.id,
                    user_id=session.user_id,
                    data=session.data,
                    expires_at=session.expires_at,
                    created_at=session.created_at,
                )
            )
            await db.commit()
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with self._session() as db:
            row = await db.get(SessionRow, session_id)
            return _to_session(row) if row else None

    async def update_session(self, session_id: str, data: dict[str, Any]) -> Optional[Session]:
        async with self._session() as db:
            row = await db.get(SessionRow, session_id)
            if row is None:
                return None
            row.data = data
            await db.commit()
            return _to_session(row)

    async def delete_session(self, session_id: str) -> None:
        async with self._session() as db:
            await db.execute(delete(SessionRow).where(SessionRow.id == session_id))
            await db.commit()

    async def delete_expired_sessions(self, now: datetime) -> int:
        async with self._session() as db:
            result = await db.execute(delete(SessionRow).where(SessionRow.expires_at <= now))
            await db.commit()
            return result.rowcount


# Row <-> model mapping

def _user_row(user: User) -> UserRow:
    return UserRow(
        id=user.id,
        username=user.username,
        email=user.email,
        profile=user.profile or {},
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _link_row(link: StrategyLink) -> StrategyLinkRow:
    return StrategyLinkRow(
        id=link.id,
        user_id=link.user_id,
        strategy_name=link.strategy_name,
        strategy_id=link.strategy_id,
        profile=link.profile or {},
        tokens=link.tokens.to_dict() if link.tokens else None,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


def _to_user(row: UserRow, links: list[StrategyLink]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        profile=row.profile or {},
        strategies=links,
        created_at=parse_utc_timestamp(row.created_at),
        updated_at=parse_utc_timestamp(row.updated_at),
    )


def _to_link(row: StrategyLinkRow) -> StrategyLink:
    return StrategyLink(
        id=row.id,
        user_id=row.user_id,
        strategy_name=row.strategy_name,
        strategy_id=row.strategy_id,
        profile=row.profile or {},
        tokens=TokenBundle.from_dict(row.tokens),
        created_at=parse_utc_timestamp(row.created_at),
        updated_at=parse_utc_timestamp(row.updated_at),
    )


def _to_session(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        data=row.data or {},
        expires_at=parse_utc_timestamp(row.expires_at),
        created_at=parse_utc_timestamp(row.created_at),
    )

"""Storage backends for users, strategy links and sessions."""

from typing import Optional

from .base import DuplicateLinkError, StorageBackend, StorageError
from .memory import MemoryStorage
from .sql import SQLStorage


def create_storage(
    database_url: Optional[str], create_schema: bool = False, echo: bool = False
) -> Optional[StorageBackend]:
    """Select a backend from a database URL.

    No URL means no storage. ``memory://`` selects the in-memory backend;
    anything else is handed to SQLAlchemy.
    """
    if not database_url:
        return None
    if database_url.startswith("memory://"):
        return MemoryStorage()
    return SQLStorage(database_url, echo=echo, create_schema=create_schema)


__all__ = [
    "StorageBackend",
    "StorageError",
    "DuplicateLinkError",
    "MemoryStorage",
    "SQLStorage",
    "create_storage",
]

"""Broker services: sessions, identity linking and orchestration."""

from .session_manager import SessionManager
from .identity_linker import IdentityLinker
from .broker import IdentityBroker

__all__ = ["SessionManager", "IdentityLinker", "IdentityBroker"]

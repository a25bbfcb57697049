"""Abstract authentication strategy interface.

This module defines the contract that all authentication strategies must implement.
The broker keeps a registry of named strategies and dispatches to them by name.
"""

from abc import ABC, abstractmethod
from enum import Enum

from identity_broker.api.context import RequestContext
from identity_broker.domain.models import AuthErrorCode, AuthResult


class StrategyKind(str, Enum):
    """Closed set of strategy kinds (matches the ``type`` tag in configuration)"""
    LOCAL = "local"
    OAUTH = "oauth"
    JWT = "jwt"
    SAML = "saml"


class AuthStrategy(ABC):
    """Abstract interface for authentication strategies.

    Every strategy answers ``authenticate``. Strategies using a redirect-based
    handshake (OAuth) also answer ``callback``; the rest report
    ``CallbackUnsupported``.

    Implementations must never raise out of ``authenticate``/``callback``:
    lower-level failures are converted to an ``AuthResult`` failure at this
    boundary.
    """

    kind: StrategyKind

    def __init__(self, name: str):
        self.name = name

    @property
    def supports_callback(self) -> bool:
        return False

    @abstractmethod
    async def authenticate(self, request: RequestContext) -> AuthResult:
        """Run the first (or only) step of the strategy.

        Args:
            request: Inbound request context

        Returns:
            Success carrying a user, a candidate identity or a redirect;
            failure carrying an error code
        """
        pass

    async def callback(self, request: RequestContext) -> AuthResult:
        """Complete a redirect-based handshake.

        Args:
            request: Inbound callback request (query carries ``code``/``state``)

        Returns:
            Success carrying the candidate identity and tokens, or failure
        """
        return AuthResult.fail(
            AuthErrorCode.CALLBACK_UNSUPPORTED,
            f"Strategy '{self.name}' does not support callbacks",
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"

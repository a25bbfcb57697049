"""Local authentication strategy (username/password).

The broker does not know how passwords are stored: verification is delegated
to a credential verifier supplied by the host application. ``hash_password``
and ``verify_password`` are bcrypt helpers for building such a verifier.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

import bcrypt

from identity_broker.api.context import RequestContext
from identity_broker.config.settings import LocalStrategyConfig
from identity_broker.domain.models import AuthErrorCode, AuthResult, User

from .provider import AuthStrategy, StrategyKind

logger = logging.getLogger(__name__)

CredentialVerifier = Callable[
    [str, str], Union[Optional[User], Awaitable[Optional[User]]]
]


class LocalAuthStrategy(AuthStrategy):
    """Username/password authentication against a host-supplied verifier.

    Configuration:
        username_field: Body field carrying the username (default "username")
        password_field: Body field carrying the password (default "password")
        hash_rounds: bcrypt cost used by ``hash_password`` (default 10)
    """

    kind = StrategyKind.LOCAL

    def __init__(
        self,
        name: str = "local",
        config: Optional[LocalStrategyConfig] = None,
        verifier: Optional[CredentialVerifier] = None,
    ):
        super().__init__(name)
        self.config = config or LocalStrategyConfig()
        self.verifier = verifier

    async def authenticate(self, request: RequestContext) -> AuthResult:
        """Verify submitted credentials.

        Args:
            request: Request whose body carries the credential fields

        Returns:
            Success with the verified user, or a failure
        """
        username = request.body.get(self.config.username_field)
        password = request.body.get(self.config.password_field)

        if not username or not password:
            return AuthResult.fail(AuthErrorCode.MISSING_CREDENTIALS)

        if self.verifier is None:
            logger.error(f"Local strategy '{self.name}' has no credential verifier")
            return AuthResult.fail(AuthErrorCode.VERIFIER_NOT_CONFIGURED)

        try:
            user = self.verifier(username, password)
            if inspect.isawaitable(user):
                user = await user
        except Exception as e:
            # Verifier internals (storage errors) stay server-side
            logger.error(f"Credential verifier failed for '{self.name}': {e}")
            return AuthResult.fail(AuthErrorCode.AUTHENTICATION_FAILED)

        if user is None:
            logger.warning(f"Login failed: invalid credentials (strategy: {self.name})")
            return AuthResult.fail(AuthErrorCode.INVALID_CREDENTIALS)

        logger.info(f"User authenticated via {self.name}: {user.id}")
        return AuthResult.ok(user=user)

    def hash_password(self, password: str) -> str:
        """Hash a password for this strategy's verifier at the configured cost."""
        return hash_password(password, rounds=self.config.hash_rounds)


def hash_password(password: str, rounds: int = 10) -> str:
    """Hash a password with bcrypt.

    Args:
        password: Plain text password
        rounds: bcrypt cost factor

    Returns:
        bcrypt hash as text
    """
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Malformed hash
        return False

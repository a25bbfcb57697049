"""Authentication outcome model

Strategies, the identity linker and the broker all return ``AuthResult``
instead of raising, so callers branch on the outcome without installing
exception handlers.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from identity_broker.domain.models.identity import CandidateIdentity, TokenBundle, User


class AuthErrorCode(Enum):
    """Failure taxonomy shared by every strategy and the broker"""
    MISSING_CREDENTIALS = "MissingCredentials"
    VERIFIER_NOT_CONFIGURED = "VerifierNotConfigured"
    INVALID_CREDENTIALS = "InvalidCredentials"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    NO_TOKEN_PROVIDED = "NoTokenProvided"
    INVALID_TOKEN = "InvalidToken"
    TOKEN_EXPIRED = "TokenExpired"
    MISSING_AUTHORIZATION_CODE = "MissingAuthorizationCode"
    INVALID_STATE = "InvalidState"
    TOKEN_EXCHANGE_FAILED = "TokenExchangeFailed"
    PROFILE_FETCH_FAILED = "ProfileFetchFailed"
    OAUTH_CALLBACK_FAILED = "OAuthCallbackFailed"
    STRATEGY_NOT_FOUND = "StrategyNotFound"
    CALLBACK_UNSUPPORTED = "CallbackUnsupported"
    DATABASE_REQUIRED = "DatabaseRequired"
    LINK_ALREADY_CLAIMED = "LinkAlreadyClaimed"
    STRATEGY_NOT_LINKED = "StrategyNotLinked"
    CANNOT_REMOVE_LAST_STRATEGY = "CannotRemoveLastStrategy"

    @property
    def message(self) -> str:
        return _DEFAULT_MESSAGES[self]


_DEFAULT_MESSAGES = {
    AuthErrorCode.MISSING_CREDENTIALS: "Missing username or password",
    AuthErrorCode.VERIFIER_NOT_CONFIGURED: "Credential verifier not configured",
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid credentials",
    AuthErrorCode.AUTHENTICATION_FAILED: "Authentication failed",
    AuthErrorCode.NO_TOKEN_PROVIDED: "No token provided",
    AuthErrorCode.INVALID_TOKEN: "Invalid token",
    AuthErrorCode.TOKEN_EXPIRED: "Token expired",
    AuthErrorCode.MISSING_AUTHORIZATION_CODE: "Missing authorization code",
    AuthErrorCode.INVALID_STATE: "Invalid or expired state parameter",
    AuthErrorCode.TOKEN_EXCHANGE_FAILED: "Failed to obtain access token",
    AuthErrorCode.PROFILE_FETCH_FAILED: "Failed to get user profile",
    AuthErrorCode.OAUTH_CALLBACK_FAILED: "OAuth callback failed",
    AuthErrorCode.STRATEGY_NOT_FOUND: "Strategy not found",
    AuthErrorCode.CALLBACK_UNSUPPORTED: "Strategy does not support callbacks",
    AuthErrorCode.DATABASE_REQUIRED: "Database required for linking strategies",
    AuthErrorCode.LINK_ALREADY_CLAIMED: "Identity already linked to another user",
    AuthErrorCode.STRATEGY_NOT_LINKED: "Strategy not linked",
    AuthErrorCode.CANNOT_REMOVE_LAST_STRATEGY: "Cannot unlink last authentication method",
}


@dataclass
class AuthResult:
    """Tagged authentication outcome

    Attributes:
        success: Whether the operation succeeded
        user: Resolved canonical user
        identity: Candidate identity awaiting resolution
        tokens: Provider token bundle
        redirect: URL the client must be sent to (OAuth authorize step)
        link_user_id: User an OAuth callback should be linked to
        error: Failure code (failures only)
        message: Short machine-stable failure message
    """
    success: bool
    user: Optional[User] = None
    identity: Optional[CandidateIdentity] = None
    tokens: Optional[TokenBundle] = None
    redirect: Optional[str] = None
    link_user_id: Optional[str] = None
    error: Optional[AuthErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def ok(
        cls,
        user: Optional[User] = None,
        identity: Optional[CandidateIdentity] = None,
        tokens: Optional[TokenBundle] = None,
        redirect: Optional[str] = None,
        link_user_id: Optional[str] = None,
    ) -> 'AuthResult':
        return cls(
            success=True,
            user=user,
            identity=identity,
            tokens=tokens,
            redirect=redirect,
            link_user_id=link_user_id,
        )

    @classmethod
    def fail(cls, error: AuthErrorCode, message: Optional[str] = None) -> 'AuthResult':
        return cls(success=False, error=error, message=message or error.message)

    @property
    def is_failure(self) -> bool:
        return not self.success

    def to_error_dict(self) -> dict:
        """Error body for HTTP responses."""
        return {
            "error": self.message,
            "code": self.error.value if self.error else None,
        }

"""Bearer-token authentication strategy (stateless JWT claims).

Tokens are read from ``Authorization: Bearer``, then a query parameter, then
a body field. Signatures are verified with python-jose unless the strategy is
explicitly configured with ``insecure_skip_signature``, in which case only the
token's structure and ``exp`` claim are checked.
"""

import logging
import time
from typing import Any, Optional

from jose import jwt, JWTError
from jose.exceptions import ExpiredSignatureError

from identity_broker.api.context import RequestContext
from identity_broker.config.settings import BearerStrategyConfig
from identity_broker.domain.models import AuthErrorCode, AuthResult, CandidateIdentity

from .provider import AuthStrategy, StrategyKind

logger = logging.getLogger(__name__)


class BearerTokenStrategy(AuthStrategy):
    """Authenticate a request from the claims of a bearer token."""

    kind = StrategyKind.JWT

    def __init__(
        self,
        name: str = "jwt",
        config: Optional[BearerStrategyConfig] = None,
        secret: Optional[str] = None,
    ):
        """Initialize bearer strategy.

        Args:
            name: Registry name
            config: Strategy configuration
            secret: Broker secret, used when the config carries none
        """
        super().__init__(name)
        self.config = config or BearerStrategyConfig()
        self.secret = self.config.secret or secret

        if self.config.insecure_skip_signature:
            logger.warning(
                f"Bearer strategy '{name}' accepts tokens WITHOUT signature verification! "
                "Only use this mode behind a trusted token issuer."
            )
        elif not self.secret:
            raise ValueError(f"Bearer strategy '{name}' requires a secret")

    def extract_token(self, request: RequestContext) -> Optional[str]:
        """Find the token in header, query or body (in that order)."""
        authorization = request.header("Authorization")
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() == "bearer":
            token = token.strip()
            if token:
                return token

        token = request.query.get(self.config.query_param) or request.body.get(self.config.body_field)
        return token or None

    async def authenticate(self, request: RequestContext) -> AuthResult:
        token = self.extract_token(request)
        if not token:
            return AuthResult.fail(AuthErrorCode.NO_TOKEN_PROVIDED)

        if not _has_jwt_shape(token):
            return AuthResult.fail(AuthErrorCode.INVALID_TOKEN)

        if self.config.insecure_skip_signature:
            claims, failure = self._decode_unverified(token)
        else:
            claims, failure = self._decode_verified(token)
        if failure is not None:
            return failure

        subject = claims.get("sub") or claims.get("id")
        if not subject:
            return AuthResult.fail(AuthErrorCode.INVALID_TOKEN, "Token has no subject")

        identity = CandidateIdentity(
            provider_id=str(subject),
            username=claims.get("username") or claims.get("preferred_username"),
            email=claims.get("email"),
            profile=claims,
        )
        return AuthResult.ok(identity=identity)

    def _decode_verified(self, token: str) -> tuple[dict, Optional[AuthResult]]:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.config.algorithm],
                options={"verify_aud": False},
            )
            return claims, None
        except ExpiredSignatureError:
            return {}, AuthResult.fail(AuthErrorCode.TOKEN_EXPIRED)
        except JWTError as e:
            logger.warning(f"Bearer token rejected by '{self.name}': {e}")
            return {}, AuthResult.fail(AuthErrorCode.INVALID_TOKEN)

    def _decode_unverified(self, token: str) -> tuple[dict, Optional[AuthResult]]:
        try:
            jwt.get_unverified_header(token)
            claims = jwt.get_unverified_claims(token)
        except JWTError as e:
            logger.warning(f"Malformed bearer token for '{self.name}': {e}")
            return {}, AuthResult.fail(AuthErrorCode.INVALID_TOKEN)

        exp = claims.get("exp")
        if exp is not None:
            try:
                expired = float(exp) < time.time()
            except (TypeError, ValueError):
                return {}, AuthResult.fail(AuthErrorCode.INVALID_TOKEN)
            if expired:
                return {}, AuthResult.fail(AuthErrorCode.TOKEN_EXPIRED)
        return claims, None


def _has_jwt_shape(token: str) -> bool:
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


def sign_token(
    claims: dict[str, Any],
    secret: str,
    expires_in: int = 3600,
    algorithm: str = "HS256",
) -> str:
    """Issue a signed token accepted by :class:`BearerTokenStrategy`.

    Args:
        claims: Claims to embed (``sub`` identifies the principal)
        secret: Signing secret
        expires_in: Lifetime in seconds
        algorithm: HMAC algorithm

    Returns:
        Encoded JWT
    """
    now = int(time.time())
    payload = {**claims, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm=algorithm)

"""OAuth 2.0 authorization-code strategy.

Two entry points:
- authenticate: issue a state, bind it to a pending authorization and
  redirect to the provider (no network call)
- callback: validate the state, exchange the code for tokens, fetch the
  provider profile and normalize it into a candidate identity

Provider calls return ``None`` on failure; ``callback`` is the single place
where failures become an ``AuthResult``. Nothing raised below it reaches the
broker.
"""

import logging
import secrets
import time
from datetime import timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from identity_broker.api.context import RequestContext
from identity_broker.config.settings import OAuthStrategyConfig
from identity_broker.domain.models import (
    AuthErrorCode,
    AuthResult,
    CandidateIdentity,
    TokenBundle,
    utc_now,
)

from .presets import apply_preset
from .provider import AuthStrategy, StrategyKind
from .state import MemoryStateStore, PendingAuthorization, StateStore

logger = logging.getLogger(__name__)


class OAuthStrategy(AuthStrategy):
    """Generic OAuth 2.0 authorization-code strategy.

    Example Configuration:
        {"name": "github", "type": "oauth",
         "config": {"client_id": "xxx", "client_secret": "xxx",
                    "callback_url": "https://app.example.com/auth/github/callback"}}

        The strategy name (or ``provider``) selects endpoint presets; custom
        providers set ``authorize_url``, ``token_url`` and ``userinfo_url``.
    """

    kind = StrategyKind.OAUTH

    def __init__(
        self,
        name: str,
        config: OAuthStrategyConfig,
        state_store: Optional[StateStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize OAuth strategy.

        Args:
            name: Registry name, also the strategy name on created links
            config: Client credentials and endpoints
            state_store: Where issued states are bound (in-memory by default)
            transport: httpx transport override (tests, proxies)
        """
        super().__init__(name)
        self.config = apply_preset(config, name)
        self.state_store = state_store or MemoryStateStore()
        self._transport = transport

    @property
    def supports_callback(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Step 1: redirect to the provider
    # ------------------------------------------------------------------

    async def authenticate(self, request: RequestContext) -> AuthResult:
        state = generate_state()
        link_user_id = request.user.id if request.link_intent and request.user else None

        if self.config.validate_state:
            try:
                await self.state_store.save(
                    state,
                    PendingAuthorization(
                        strategy_name=self.name,
                        issued_at=time.time(),
                        link_user_id=link_user_id,
                    ),
                    self.config.state_ttl_seconds,
                )
            except Exception as e:
                logger.error(f"Failed to store OAuth state for {self.name}: {e}")
                return AuthResult.fail(AuthErrorCode.AUTHENTICATION_FAILED)

        return AuthResult.ok(redirect=self.build_authorization_url(state))

    def build_authorization_url(self, state: str) -> str:
        """Build the provider authorization URL for a state."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.callback_url,
            "response_type": "code",
            "state": state,
            "scope": " ".join(self.config.scope or []),
        }
        return f"{self.config.authorize_url}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Step 2: provider redirected back
    # ------------------------------------------------------------------

    async def callback(self, request: RequestContext) -> AuthResult:
        code = request.query.get("code")
        state = request.query.get("state")

        if not code:
            provider_error = request.query.get("error")
            if provider_error:
                logger.warning(f"OAuth provider {self.name} returned error: {provider_error}")
            return AuthResult.fail(AuthErrorCode.MISSING_AUTHORIZATION_CODE)

        try:
            pending = None
            if self.config.validate_state:
                pending = await self._redeem_state(state)
                if pending is None:
                    logger.warning(f"OAuth callback for {self.name} rejected: unknown or reused state")
                    return AuthResult.fail(AuthErrorCode.INVALID_STATE)

            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds, transport=self._transport
            ) as client:
                tokens = await self._exchange_code(client, code)
                if tokens is None:
                    return AuthResult.fail(AuthErrorCode.TOKEN_EXCHANGE_FAILED)

                profile = await self._fetch_profile(client, tokens["access_token"])
                if profile is None:
                    return AuthResult.fail(AuthErrorCode.PROFILE_FETCH_FAILED)

            identity = normalize_profile(profile)
            if identity is None:
                logger.error(f"OAuth profile from {self.name} has no id/sub")
                return AuthResult.fail(AuthErrorCode.PROFILE_FETCH_FAILED)

            logger.info(f"OAuth callback successful: strategy={self.name}, provider_id={identity.provider_id}")
            return AuthResult.ok(
                identity=identity,
                tokens=_token_bundle(tokens),
                link_user_id=pending.link_user_id if pending else None,
            )

        except Exception as e:
            logger.error(f"OAuth callback failed for {self.name}: {e}", exc_info=True)
            return AuthResult.fail(AuthErrorCode.OAUTH_CALLBACK_FAILED)

    async def _redeem_state(self, state: Optional[str]) -> Optional[PendingAuthorization]:
        if not state:
            return None
        pending = await self.state_store.consume(state)
        if pending is None or pending.strategy_name != self.name:
            return None
        return pending

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> Optional[dict]:
        """POST the authorization code to the token endpoint.

        Returns:
            Token response containing ``access_token``, or None
        """
        data = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "redirect_uri": self.config.callback_url,
        }
        try:
            response = await client.post(
                self.config.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"OAuth token exchange failed for {self.name}: {e!r}")
            return None

        if not response.is_success:
            logger.error(f"OAuth token exchange failed for {self.name}: {response.status_code}")
            return None

        tokens = _json_object(response)
        if tokens is None:
            logger.error(f"OAuth token response from {self.name} is not a JSON object")
            return None
        if not tokens.get("access_token"):
            logger.error(f"OAuth token response from {self.name} has no access_token")
            return None
        return tokens

    async def _fetch_profile(self, client: httpx.AsyncClient, access_token: str) -> Optional[dict]:
        """GET the provider user-info endpoint."""
        try:
            response = await client.get(
                self.config.userinfo_url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error(f"OAuth profile fetch failed for {self.name}: {e!r}")
            return None

        if not response.is_success:
            logger.error(f"OAuth profile fetch failed for {self.name}: {response.status_code}")
            return None

        profile = _json_object(response)
        if profile is None:
            logger.error(f"OAuth profile from {self.name} is not a JSON object")
        return profile


def _json_object(response: httpx.Response) -> Optional[dict]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def generate_state() -> str:
    """Generate an unguessable CSRF state token."""
    return secrets.token_urlsafe(32)


def normalize_profile(profile: dict[str, Any]) -> Optional[CandidateIdentity]:
    """Map a raw provider profile to a candidate identity.

    ``id`` or ``sub`` is the provider identity; ``username``, ``login`` or
    ``preferred_username`` the display name. The raw profile is kept whole.
    """
    provider_id = profile.get("id") or profile.get("sub")
    if provider_id is None or provider_id == "":
        return None
    return CandidateIdentity(
        provider_id=str(provider_id),
        username=profile.get("username") or profile.get("login") or profile.get("preferred_username"),
        email=profile.get("email"),
        profile=profile,
    )


def _token_bundle(tokens: dict) -> TokenBundle:
    expires_at = None
    expires_in = tokens.get("expires_in")
    if expires_in:
        try:
            expires_at = utc_now() + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric expires_in: {expires_in!r}")
    return TokenBundle(
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        expires_at=expires_at,
    )

"""Identity broker (orchestration façade).

Composes the strategy registry, the session manager and the identity linker
to answer "authenticate", "complete callback", "link" and "unlink".

The broker is an explicitly constructed object: the host application builds
it with its collaborators, calls ``init()`` at startup and ``close()`` at
shutdown. There is no process-wide instance.

Example:
    broker = IdentityBroker(
        BrokerConfig(secret="...", strategies=[...]),
        storage=SQLStorage("postgresql://..."),
        verifier=check_password,
    )
    await broker.init()
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

import httpx

from identity_broker.api.context import RequestContext
from identity_broker.config.settings import BrokerConfig
from identity_broker.core.auth import AuthStrategy, StateStore, build_registry
from identity_broker.core.auth.local import CredentialVerifier
from identity_broker.domain.models import (
    AuthErrorCode,
    AuthResult,
    Session,
    StrategyLink,
    User,
    utc_now,
)
from identity_broker.infrastructure.storage import StorageBackend

from .identity_linker import IdentityLinker
from .session_manager import SessionManager

logger = logging.getLogger(__name__)


class IdentityBroker:
    """Authentication orchestration engine."""

    def __init__(
        self,
        config: BrokerConfig,
        storage: Optional[StorageBackend] = None,
        verifier: Optional[CredentialVerifier] = None,
        state_store: Optional[StateStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the broker

        Args:
            config: Secret, session duration and strategy configurations
            storage: Storage collaborator (sessions and links need one)
            verifier: Credential verifier for local strategies
            state_store: OAuth state store (per-strategy in-memory if unset)
            transport: httpx transport override for OAuth provider calls
            clock: Source of "now" for session expiry
        """
        self.config = config
        self.storage = storage
        self.strategies: dict[str, AuthStrategy] = build_registry(
            config.strategies,
            secret=config.secret,
            verifier=verifier,
            state_store=state_store,
            transport=transport,
        )
        self.sessions = SessionManager(storage, config.session_duration_seconds, clock=clock)
        self.linker = IdentityLinker(storage)

    @property
    def database_enabled(self) -> bool:
        return self.storage is not None

    async def init(self) -> None:
        """Prepare collaborators (schema creation, connections)."""
        if self.storage is not None:
            await self.storage.init()
        logger.info(f"Identity broker ready: strategies={sorted(self.strategies)}")

    async def close(self) -> None:
        if self.storage is not None:
            await self.storage.close()
        logger.info("Identity broker closed")

    def register_strategy(self, strategy: AuthStrategy) -> None:
        """Add a custom strategy. Call during startup only."""
        self.strategies[strategy.name] = strategy

    def get_strategy(self, name: str) -> Optional[AuthStrategy]:
        return self.strategies.get(name)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self, strategy_name: str, request: RequestContext) -> AuthResult:
        """Run a strategy's first step."""
        strategy = self.strategies.get(strategy_name)
        if strategy is None:
            return AuthResult.fail(
                AuthErrorCode.STRATEGY_NOT_FOUND, f"Strategy '{strategy_name}' not found"
            )
        return await strategy.authenticate(request)

    async def handle_callback(self, strategy_name: str, request: RequestContext) -> AuthResult:
        """Complete a redirect handshake and resolve the canonical user.

        A callback whose state was issued for a link request is linked to
        that user instead of being resolved as a login.
        """
        strategy = self.strategies.get(strategy_name)
        if strategy is None:
            return AuthResult.fail(
                AuthErrorCode.STRATEGY_NOT_FOUND, f"Strategy '{strategy_name}' not found"
            )
        if not strategy.supports_callback:
            return AuthResult.fail(
                AuthErrorCode.CALLBACK_UNSUPPORTED,
                f"Strategy '{strategy_name}' does not support callbacks",
            )

        result = await strategy.callback(request)
        if result.is_failure:
            logger.warning(f"Callback failed for {strategy_name}: {result.error.value}")
            return result

        if result.link_user_id and result.identity is not None:
            linked = await self.linker.link(
                result.link_user_id,
                strategy_name,
                result.identity.provider_id,
                result.identity.profile,
                result.tokens,
            )
            if linked.success:
                linked.identity = result.identity
                linked.tokens = result.tokens
                linked.link_user_id = result.link_user_id
            return linked

        return await self.complete_login(strategy_name, result)

    async def complete_login(self, strategy_name: str, result: AuthResult) -> AuthResult:
        """Turn a successful strategy result into one carrying a canonical user.

        A user returned by a verifier (local) is registered in storage on
        first sight. Redirect-only results pass through unchanged. Without
        storage, a transient user is built from the candidate identity.
        """
        if result.is_failure:
            return result
        if result.user is not None:
            if self.storage is not None:
                result.user = await self.linker.ensure_user(strategy_name, result.user)
            return result
        if result.identity is None:
            return result

        if self.storage is None:
            identity = result.identity
            result.user = User(
                id=identity.provider_id,
                username=identity.username,
                email=identity.email,
                profile=dict(identity.profile),
            )
            return result

        return await self.linker.resolve_or_create(strategy_name, result.identity, result.tokens)

    async def begin_link(self, strategy_name: str, user: User, request: RequestContext) -> AuthResult:
        """Authenticate with another strategy on behalf of ``user``.

        Redirect strategies return the redirect; the link is made when the
        callback arrives. Direct strategies are linked immediately.
        """
        request.user = user
        request.link_intent = True

        result = await self.authenticate(strategy_name, request)
        if result.is_failure or result.redirect:
            return result

        if result.identity is not None:
            provider_id, profile = result.identity.provider_id, result.identity.profile
        elif result.user is not None:
            provider_id, profile = result.user.id, result.user.profile
        else:
            return result

        return await self.link(user.id, strategy_name, provider_id, profile, result.tokens)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, user: User, data: Optional[dict[str, Any]] = None) -> Session:
        return await self.sessions.create(user, data)

    async def get_session(self, session_id: str) -> Optional[Session]:
        return await self.sessions.get(session_id)

    async def update_session(self, session_id: str, data: dict[str, Any]) -> Optional[Session]:
        return await self.sessions.update(session_id, data)

    async def destroy_session(self, session_id: str) -> None:
        await self.sessions.destroy(session_id)

    async def reap_expired_sessions(self) -> int:
        return await self.sessions.reap_expired()

    def session_id_from(self, request: RequestContext) -> Optional[str]:
        """Session id from the cookie, else the session header."""
        return request.cookie(self.config.session_cookie_name) or request.header(
            self.config.session_header_name
        )

    async def current_user(self, request: RequestContext) -> Optional[User]:
        """Resolve the user behind a request's session.

        No session, an expired session and a vanished user all yield None.
        The live session is stored on ``request.session``.
        """
        session = await self.sessions.get(self.session_id_from(request))
        if session is None or self.storage is None:
            return None

        user = await self.storage.get_user(session.user_id)
        if user is None:
            return None
        request.session = session
        return user

    # ------------------------------------------------------------------
    # Users and links
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        if self.storage is None:
            return None
        return await self.storage.get_user(user_id)

    async def update_profile(
        self,
        user_id: str,
        profile: Optional[dict[str, Any]] = None,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[User]:
        """Replace profile fields of a user; None if the user is absent."""
        if self.storage is None:
            return None
        changes: dict[str, Any] = {}
        if profile is not None:
            changes["profile"] = profile
        if username is not None:
            changes["username"] = username
        if email is not None:
            changes["email"] = email
        return await self.storage.update_user(user_id, changes)

    async def link(
        self,
        user_id: str,
        strategy_name: str,
        provider_id: str,
        profile: Optional[dict[str, Any]] = None,
        tokens=None,
    ) -> AuthResult:
        return await self.linker.link(user_id, strategy_name, provider_id, profile, tokens)

    async def unlink(self, user_id: str, strategy_name: str) -> AuthResult:
        return await self.linker.unlink(user_id, strategy_name)

    async def list_links(self, user_id: str) -> list[StrategyLink]:
        return await self.linker.list_links(user_id)

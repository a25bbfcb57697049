"""Authentication request handlers.

Thin adapters over :class:`IdentityBroker` that translate ``AuthResult``
into status codes, JSON bodies, redirects and the session cookie. They only
see ``RequestContext``/``ResponseContext``; routing is the host's concern.

Status mapping:
- 400 with ``{"error": ..., "code": ...}`` on strategy failure
- 401 with ``{"error": "Authentication required"}`` when a session is needed
- 302 to the provider when a strategy returns a redirect
"""

import logging
from typing import TYPE_CHECKING, Optional

from identity_broker.api.context import RequestContext, ResponseContext
from identity_broker.api.middleware import AUTHENTICATION_REQUIRED
from identity_broker.domain.models import AuthResult, User

if TYPE_CHECKING:
    from identity_broker.services.broker import IdentityBroker

logger = logging.getLogger(__name__)


class AuthHandlers:
    """Login, callback, logout, profile, link and unlink handlers."""

    def __init__(
        self,
        broker: "IdentityBroker",
        cookie_secure: bool = False,
        success_redirect: Optional[str] = None,
    ):
        """Initialize handlers

        Args:
            broker: Identity broker
            cookie_secure: Always mark the session cookie Secure (otherwise
                only for HTTPS requests)
            success_redirect: Where to send the browser after a successful
                OAuth callback; JSON is returned when unset
        """
        self.broker = broker
        self.cookie_secure = cookie_secure
        self.success_redirect = success_redirect

    async def login(
        self, strategy_name: str, request: RequestContext, response: ResponseContext
    ) -> ResponseContext:
        result = await self.broker.authenticate(strategy_name, request)
        if result.is_failure:
            return self._failure(strategy_name, result, response)
        if result.redirect:
            return response.redirect(result.redirect)

        result = await self.broker.complete_login(strategy_name, result)
        if result.is_failure:
            return self._failure(strategy_name, result, response)

        logger.info(f"Login succeeded via {strategy_name}: user {result.user.id}")
        return await self._start_session(result.user, request, response)

    async def callback(
        self, strategy_name: str, request: RequestContext, response: ResponseContext
    ) -> ResponseContext:
        result = await self.broker.handle_callback(strategy_name, request)
        if result.is_failure:
            return self._failure(strategy_name, result, response)

        if result.link_user_id:
            # Link flow: the user already holds a session
            logger.info(f"Linked {strategy_name} to user {result.link_user_id}")
            if self.success_redirect:
                return response.redirect(self.success_redirect)
            return self._user_response(result.user, response)

        logger.info(f"Login succeeded via {strategy_name}: user {result.user.id}")
        await self._start_session(result.user, request, response)
        if self.success_redirect:
            return response.redirect(self.success_redirect)
        return response

    async def logout(self, request: RequestContext, response: ResponseContext) -> ResponseContext:
        session_id = self.broker.session_id_from(request)
        if session_id:
            await self.broker.destroy_session(session_id)
        response.clear_cookie(self.broker.config.session_cookie_name)
        return response.json({"success": True})

    async def profile(self, request: RequestContext, response: ResponseContext) -> ResponseContext:
        user = await self._authenticated_user(request)
        if user is None:
            return response.status(401).json(dict(AUTHENTICATION_REQUIRED))

        links = await self.broker.list_links(user.id)
        return response.json({
            "user": user.to_dict(),
            "strategies": [link.to_public_dict() for link in links],
        })

    async def link(
        self, strategy_name: str, request: RequestContext, response: ResponseContext
    ) -> ResponseContext:
        user = await self._authenticated_user(request)
        if user is None:
            return response.status(401).json(dict(AUTHENTICATION_REQUIRED))

        result = await self.broker.begin_link(strategy_name, user, request)
        if result.is_failure:
            return self._failure(strategy_name, result, response)
        if result.redirect:
            return response.redirect(result.redirect)
        return self._user_response(result.user, response)

    async def unlink(
        self, strategy_name: str, request: RequestContext, response: ResponseContext
    ) -> ResponseContext:
        user = await self._authenticated_user(request)
        if user is None:
            return response.status(401).json(dict(AUTHENTICATION_REQUIRED))

        result = await self.broker.unlink(user.id, strategy_name)
        if result.is_failure:
            return self._failure(strategy_name, result, response)
        return self._user_response(result.user, response)

    async def _authenticated_user(self, request: RequestContext) -> Optional[User]:
        if request.user is None:
            request.user = await self.broker.current_user(request)
            request.is_authenticated = request.user is not None
        return request.user

    async def _start_session(
        self, user: User, request: RequestContext, response: ResponseContext
    ) -> ResponseContext:
        session = await self.broker.create_session(user)
        response.set_cookie(
            self.broker.config.session_cookie_name,
            session.id,
            max_age=self.broker.config.session_duration_seconds,
            httponly=True,
            secure=self.cookie_secure or request.secure,
        )
        return response.json({"success": True, "user": user.to_dict()})

    @staticmethod
    def _user_response(user: Optional[User], response: ResponseContext) -> ResponseContext:
        if user is None:
            # User record vanished after the session was resolved
            return response.status(401).json(dict(AUTHENTICATION_REQUIRED))
        return response.json({"success": True, "user": user.to_dict()})

    @staticmethod
    def _failure(strategy_name: str, result: AuthResult, response: ResponseContext) -> ResponseContext:
        logger.warning(f"Authentication via {strategy_name} failed: {result.error.value}")
        return response.status(400).json(result.to_error_dict())

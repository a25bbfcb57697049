"""Authentication middleware factories.

Each factory returns an async middleware with the signature::

    async def middleware(request, response, call_next) -> ResponseContext

The middleware resolves the current user from the session cookie (or the
session header), populates ``request.user``/``request.session``/
``request.is_authenticated`` and either awaits ``call_next()`` or
short-circuits with 401/403.
"""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from identity_broker.api.context import RequestContext, ResponseContext

if TYPE_CHECKING:
    from identity_broker.services.broker import IdentityBroker

logger = logging.getLogger(__name__)

CallNext = Callable[[], Awaitable[Optional[ResponseContext]]]
Middleware = Callable[[RequestContext, ResponseContext, CallNext], Awaitable[ResponseContext]]

AUTHENTICATION_REQUIRED = {"error": "Authentication required"}
INSUFFICIENT_PERMISSIONS = {"error": "Insufficient permissions"}


async def _populate(broker: "IdentityBroker", request: RequestContext) -> bool:
    user = await broker.current_user(request)
    request.user = user
    request.is_authenticated = user is not None
    return request.is_authenticated


async def _continue(response: ResponseContext, call_next: CallNext) -> ResponseContext:
    result = await call_next()
    return result if result is not None else response


def require_auth(broker: "IdentityBroker") -> Middleware:
    """Reject unauthenticated requests with 401."""

    async def middleware(
        request: RequestContext, response: ResponseContext, call_next: CallNext
    ) -> ResponseContext:
        if not await _populate(broker, request):
            return response.status(401).json(dict(AUTHENTICATION_REQUIRED))
        return await _continue(response, call_next)

    return middleware


def optional_auth(broker: "IdentityBroker") -> Middleware:
    """Populate the user when a session exists; never reject."""

    async def middleware(
        request: RequestContext, response: ResponseContext, call_next: CallNext
    ) -> ResponseContext:
        await _populate(broker, request)
        return await _continue(response, call_next)

    return middleware


def require_role(broker: "IdentityBroker", role: str) -> Middleware:
    """Reject with 401 when unauthenticated, 403 when ``role`` is missing.

    Roles are read from ``user.profile["roles"]``.
    """

    async def middleware(
        request: RequestContext, response: ResponseContext, call_next: CallNext
    ) -> ResponseContext:
        if not await _populate(broker, request):
            return response.status(401).json(dict(AUTHENTICATION_REQUIRED))
        if not request.user.has_role(role):
            logger.warning(f"User {request.user.id} lacks role '{role}'")
            return response.status(403).json(dict(INSUFFICIENT_PERMISSIONS))
        return await _continue(response, call_next)

    return middleware

"""FastAPI binding for the authentication handlers.

Key Endpoints:
- GET|POST /auth/{strategy}/login: Local/bearer login, or OAuth redirect
- GET /auth/{strategy}/callback: OAuth callback (login or pending link)
- POST /auth/logout: Destroy the session and clear the cookie
- GET /auth/me: Current user and linked strategies
- POST /auth/{strategy}/link: Link another strategy to the current user
- DELETE /auth/{strategy}/link: Unlink a strategy (never the last one)

The broker is taken from the ``build_router`` argument or, when omitted,
from ``request.app.state.broker`` (set by the application lifespan).
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from identity_broker.api.context import RequestContext, ResponseContext
from identity_broker.api.handlers import AuthHandlers
from identity_broker.domain.models import User
from identity_broker.services.broker import IdentityBroker

logger = logging.getLogger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


async def to_request_context(request: Request) -> RequestContext:
    """Translate a Starlette request into a ``RequestContext``."""
    body: dict = {}
    if request.method in _BODY_METHODS:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/json"):
            try:
                payload = await request.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                body = payload
        elif content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            body = {key: value for key, value in form.items() if isinstance(value, str)}

    return RequestContext(
        headers=dict(request.headers),
        query=dict(request.query_params),
        body=body,
        cookies=dict(request.cookies),
        secure=request.url.scheme == "https",
    )


def render_response(ctx: ResponseContext) -> Response:
    """Translate a ``ResponseContext`` into a Starlette response."""
    if ctx.redirect_url:
        response: Response = RedirectResponse(ctx.redirect_url, status_code=ctx.status_code)
    else:
        response = JSONResponse(ctx.body or {}, status_code=ctx.status_code)

    for cookie in ctx.cookies:
        if cookie.max_age == 0:
            response.delete_cookie(cookie.name, path=cookie.path)
        else:
            response.set_cookie(
                key=cookie.name,
                value=cookie.value,
                max_age=cookie.max_age,
                path=cookie.path,
                secure=cookie.secure,
                httponly=cookie.httponly,
                samesite=cookie.samesite,
            )
    return response


def _app_broker(request: Request) -> IdentityBroker:
    broker = getattr(request.app.state, "broker", None)
    if broker is None:
        raise RuntimeError("Identity broker not initialized. Set app.state.broker first.")
    return broker


def build_router(
    broker: Optional[IdentityBroker] = None,
    prefix: str = "/auth",
    cookie_secure: bool = False,
    success_redirect: Optional[str] = None,
) -> APIRouter:
    """Create the authentication router

    Args:
        broker: Identity broker; resolved from ``app.state.broker`` if None
        prefix: Route prefix
        cookie_secure: Always mark the session cookie Secure
        success_redirect: Redirect target after a successful OAuth callback

    Returns:
        APIRouter with the authentication endpoints
    """
    router = APIRouter(prefix=prefix, tags=["authentication"])

    def handlers_for(request: Request) -> AuthHandlers:
        return AuthHandlers(
            broker or _app_broker(request),
            cookie_secure=cookie_secure,
            success_redirect=success_redirect,
        )

    @router.post("/logout")
    async def logout(request: Request) -> Response:
        ctx = await to_request_context(request)
        return render_response(await handlers_for(request).logout(ctx, ResponseContext()))

    @router.get("/me")
    async def me(request: Request) -> Response:
        ctx = await to_request_context(request)
        return render_response(await handlers_for(request).profile(ctx, ResponseContext()))

    @router.api_route("/{strategy}/login", methods=["GET", "POST"])
    async def login(strategy: str, request: Request) -> Response:
        ctx = await to_request_context(request)
        return render_response(await handlers_for(request).login(strategy, ctx, ResponseContext()))

    @router.get("/{strategy}/callback")
    async def callback(strategy: str, request: Request) -> Response:
        ctx = await to_request_context(request)
        return render_response(await handlers_for(request).callback(strategy, ctx, ResponseContext()))

    @router.post("/{strategy}/link")
    async def link(strategy: str, request: Request) -> Response:
        ctx = await to_request_context(request)
        return render_response(await handlers_for(request).link(strategy, ctx, ResponseContext()))

    @router.delete("/{strategy}/link")
    async def unlink(strategy: str, request: Request) -> Response:
        ctx = await to_request_context(request)
        return render_response(await handlers_for(request).unlink(strategy, ctx, ResponseContext()))

    return router


def require_user(role: Optional[str] = None, broker: Optional[IdentityBroker] = None):
    """FastAPI dependency resolving the session user.

    Raises:
        HTTPException: 401 without a live session, 403 when ``role`` is missing

    Example:
        @app.get("/admin")
        async def admin(user: User = Depends(require_user("admin"))):
            ...
    """

    async def dependency(request: Request) -> User:
        ctx = await to_request_context(request)
        user = await (broker or _app_broker(request)).current_user(ctx)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
            )
        if role is not None and not user.has_role(role):
            logger.warning(f"User {user.id} lacks role '{role}'")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return dependency

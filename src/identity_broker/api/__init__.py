"""HTTP-facing layer: request/response abstractions, middleware, handlers and routes."""

from .context import CookieInstruction, RequestContext, ResponseContext

__all__ = ["RequestContext", "ResponseContext", "CookieInstruction"]

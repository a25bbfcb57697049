"""Framework-neutral request/response abstractions.

Strategies, middleware and handlers only ever see these two types. A web
framework binding (see ``api.routes``) translates its own request into a
``RequestContext`` and renders the resulting ``ResponseContext``.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from identity_broker.domain.models import Session, User


@dataclass
class RequestContext:
    """Inbound request as seen by the broker

    Attributes:
        headers: Request headers (looked up case-insensitively)
        query: Parsed query parameters
        body: Parsed form/JSON body fields
        cookies: Request cookies
        secure: Whether the request arrived over HTTPS
        user: Authenticated user, populated by middleware
        session: Active session, populated by middleware
        is_authenticated: Set by middleware
        link_intent: Authenticate on behalf of ``user`` to link a new method
    """
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    secure: bool = False
    user: Optional[User] = None
    session: Optional[Session] = None
    is_authenticated: bool = False
    link_intent: bool = False

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)


@dataclass
class CookieInstruction:
    """A cookie to set (or clear, when ``max_age`` is 0)."""
    name: str
    value: str = ""
    max_age: Optional[int] = None
    httponly: bool = True
    secure: bool = False
    path: str = "/"
    samesite: str = "lax"


@dataclass
class ResponseContext:
    """Outbound response built up by middleware and handlers."""
    status_code: int = 200
    body: Optional[dict] = None
    redirect_url: Optional[str] = None
    cookies: list[CookieInstruction] = field(default_factory=list)

    def status(self, code: int) -> "ResponseContext":
        self.status_code = code
        return self

    def json(self, body: dict) -> "ResponseContext":
        self.body = body
        return self

    def redirect(self, url: str, status_code: int = 302) -> "ResponseContext":
        self.status_code = status_code
        self.redirect_url = url
        return self

    def set_cookie(
        self,
        name: str,
        value: str,
        max_age: Optional[int] = None,
        httponly: bool = True,
        secure: bool = False,
    ) -> "ResponseContext":
        self.cookies.append(
            CookieInstruction(name=name, value=value, max_age=max_age, httponly=httponly, secure=secure)
        )
        return self

    def clear_cookie(self, name: str) -> "ResponseContext":
        self.cookies.append(CookieInstruction(name=name, value="", max_age=0))
        return self

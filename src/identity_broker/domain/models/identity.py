"""Identity Data Models

Purpose: Define the durable records of the identity broker

Key Components:
- User: Canonical user account
- StrategyLink: Binds one external identity to one canonical user
- Session: Server-side record proving a prior successful authentication
- TokenBundle: Provider tokens captured during a strategy run
- CandidateIdentity: Not-yet-resolved identity produced by a strategy
"""

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def parse_utc_timestamp(value) -> Optional[datetime]:
    """Parse a UTC timestamp string (or naive datetime) to an aware datetime"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_json_compatible(value):
    """Convert datetime to JSON-compatible ISO format string"""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def new_record_id() -> str:
    """Generate an opaque record identifier."""
    return str(uuid.uuid4())


def new_session_id() -> str:
    """Generate an unguessable session identifier."""
    return secrets.token_urlsafe(32)


@dataclass
class TokenBundle:
    """Provider tokens captured during authentication."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": to_json_compatible(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['TokenBundle']:
        if not data or not data.get("access_token"):
            return None
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=parse_utc_timestamp(data.get("expires_at")),
        )


@dataclass
class CandidateIdentity:
    """Identity produced by a successful strategy run, prior to resolution.

    Attributes:
        provider_id: Provider-side identity (OAuth subject, token ``sub``)
        username: Display name reported by the provider
        email: Email reported by the provider
        profile: Raw provider profile or claim set
    """
    provider_id: str
    username: Optional[str] = None
    email: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)


@dataclass
class StrategyLink:
    """Join record binding an external identity to a canonical user

    The pair (strategy_name, strategy_id) is globally unique.
    """
    id: str
    user_id: str
    strategy_name: str
    strategy_id: str
    profile: dict[str, Any] = field(default_factory=dict)
    tokens: Optional[TokenBundle] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> tuple[str, str]:
        return (self.strategy_name, self.strategy_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "strategy_name": self.strategy_name,
            "strategy_id": self.strategy_id,
            "profile": self.profile,
            "tokens": self.tokens.to_dict() if self.tokens else None,
            "created_at": to_json_compatible(self.created_at),
            "updated_at": to_json_compatible(self.updated_at),
        }

    def to_public_dict(self) -> dict:
        """Serialization safe to return to clients (no provider tokens)."""
        data = self.to_dict()
        data.pop("tokens")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'StrategyLink':
        """Create from dictionary (JSON deserialization)"""
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            strategy_name=data["strategy_name"],
            strategy_id=data["strategy_id"],
            profile=data.get("profile") or {},
            tokens=TokenBundle.from_dict(data.get("tokens")),
            created_at=parse_utc_timestamp(data["created_at"]),
            updated_at=parse_utc_timestamp(data["updated_at"]),
        )


@dataclass
class User:
    """Canonical user account

    Attributes:
        id: Opaque unique identifier
        username: Optional display/login name
        email: Optional email address
        profile: Open profile mapping (``roles`` drives role checks)
        strategies: Linked authentication methods
        created_at: Account creation timestamp
        updated_at: Last profile or link change
    """
    id: str
    username: Optional[str] = None
    email: Optional[str] = None
    profile: dict[str, Any] = field(default_factory=dict)
    strategies: list[StrategyLink] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def roles(self) -> list[str]:
        roles = self.profile.get("roles") or []
        return list(roles) if isinstance(roles, (list, tuple, set)) else []

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization"""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "profile": self.profile,
            "strategies": [link.to_public_dict() for link in self.strategies],
            "created_at": to_json_compatible(self.created_at),
            "updated_at": to_json_compatible(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'User':
        """Create from dictionary (JSON deserialization)"""
        return cls(
            id=data["id"],
            username=data.get("username"),
            email=data.get("email"),
            profile=data.get("profile") or {},
            strategies=[StrategyLink.from_dict(s) for s in data.get("strategies", [])],
            created_at=parse_utc_timestamp(data["created_at"]),
            updated_at=parse_utc_timestamp(data["updated_at"]),
        )


@dataclass
class Session:
    """Authenticated session

    Attributes:
        id: Cryptographically random identifier
        user_id: Owning user
        data: Ephemeral per-session state
        expires_at: Instant at or after which the session is absent
        created_at: Creation timestamp
    """
    id: str
    user_id: str
    data: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Sessions are expired at or after ``expires_at``."""
        return self.expires_at <= (now or utc_now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "data": self.data,
            "expires_at": to_json_compatible(self.expires_at),
            "created_at": to_json_compatible(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Session':
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            data=data.get("data") or {},
            expires_at=parse_utc_timestamp(data["expires_at"]),
            created_at=parse_utc_timestamp(data["created_at"]),
        )

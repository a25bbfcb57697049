"""Configuration Settings for the Identity Broker

Manages environment variables, strategy configuration and the
construction-time configuration consumed by the broker.
"""

from functools import lru_cache
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


DEFAULT_SESSION_DURATION_SECONDS = 24 * 60 * 60  # 24 hours
DEFAULT_SECRET = "dev-secret-change-in-production"


# ============================================================================
# Per-kind strategy configuration
# ============================================================================

class LocalStrategyConfig(BaseModel):
    """Username/password strategy configuration."""
    username_field: str = "username"
    password_field: str = "password"
    hash_rounds: int = 10


class OAuthStrategyConfig(BaseModel):
    """OAuth 2.0 authorization-code strategy configuration.

    Attributes:
        client_id: OAuth client ID
        client_secret: OAuth client secret
        callback_url: Redirect URI registered with the provider
        scope: Scopes to request (space-joined in the authorize URL)
        provider: Optional preset name (github, google, ...) filling the URLs
        authorize_url: Provider authorization endpoint
        token_url: Provider token endpoint
        userinfo_url: Provider user-info endpoint
        validate_state: Bind state to a pending authorization and reject
            unknown or reused states on callback
        state_ttl_seconds: How long an issued state stays redeemable
        timeout_seconds: Bound on each outbound provider call
    """
    client_id: str
    client_secret: str
    callback_url: str
    scope: Optional[list[str]] = None
    provider: Optional[str] = None
    authorize_url: Optional[str] = None
    token_url: Optional[str] = None
    userinfo_url: Optional[str] = None
    validate_state: bool = True
    state_ttl_seconds: int = 300
    timeout_seconds: float = 10.0


class BearerStrategyConfig(BaseModel):
    """Bearer-token strategy configuration.

    ``secret`` falls back to the broker secret when unset.
    """
    secret: Optional[str] = None
    algorithm: str = "HS256"
    query_param: str = "token"
    body_field: str = "token"
    insecure_skip_signature: bool = False


class SamlStrategyConfig(BaseModel):
    """SAML placeholder; accepted by configuration, never built."""
    idp_metadata_url: Optional[str] = None
    sp_entity_id: Optional[str] = None


class _StrategyConfigBase(BaseModel):
    name: str
    enabled: bool = True


class LocalStrategySpec(_StrategyConfigBase):
    type: Literal["local"] = "local"
    config: LocalStrategyConfig = Field(default_factory=LocalStrategyConfig)


class OAuthStrategySpec(_StrategyConfigBase):
    type: Literal["oauth"] = "oauth"
    config: OAuthStrategyConfig


class BearerStrategySpec(_StrategyConfigBase):
    type: Literal["jwt"] = "jwt"
    config: BearerStrategyConfig = Field(default_factory=BearerStrategyConfig)


class SamlStrategySpec(_StrategyConfigBase):
    type: Literal["saml"] = "saml"
    config: SamlStrategyConfig = Field(default_factory=SamlStrategyConfig)


StrategySpec = Annotated[
    Union[LocalStrategySpec, OAuthStrategySpec, BearerStrategySpec, SamlStrategySpec],
    Field(discriminator="type"),
]


class BrokerConfig(BaseModel):
    """Construction-time configuration for :class:`IdentityBroker`.

    Attributes:
        secret: Secret used by strategies needing symmetric signing
        session_duration_seconds: Lifetime of a newly created session
        strategies: Ordered strategy configurations
        session_cookie_name: Cookie carrying the session identifier
        session_header_name: Header consulted when the cookie is absent
    """
    secret: str = DEFAULT_SECRET
    session_duration_seconds: int = DEFAULT_SESSION_DURATION_SECONDS
    strategies: list[StrategySpec] = Field(default_factory=list)
    session_cookie_name: str = "broker_session"
    session_header_name: str = "X-Session-Id"

    @classmethod
    def from_settings(cls, settings: "Settings") -> "BrokerConfig":
        """Build broker configuration from application settings."""
        return cls(
            secret=settings.secret_key,
            session_duration_seconds=settings.session_duration_seconds,
            strategies=settings.strategies,
            session_cookie_name=settings.session_cookie_name,
            session_header_name=settings.session_header_name,
        )


# ============================================================================
# Application settings
# ============================================================================

class Settings(BaseSettings):
    """Application settings"""

    # Service info
    service_name: str = "identity-broker"
    service_version: str = "1.0.0"
    environment: str = "development"

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # Broker configuration
    secret_key: str = DEFAULT_SECRET
    session_duration_seconds: int = DEFAULT_SESSION_DURATION_SECONDS
    session_cookie_name: str = "broker_session"
    session_header_name: str = "X-Session-Id"
    session_cookie_secure: bool = False
    strategies: list[StrategySpec] = Field(default_factory=list)  # JSON in STRATEGIES

    # Storage configuration
    database_url: Optional[str] = None  # e.g. sqlite+aiosqlite:///broker.db
    database_migrate: bool = False
    db_echo: bool = False

    # Redis configuration (OAuth state store)
    redis_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    # CORS configuration
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance

    Returns:
        Settings instance
    """
    return Settings()


def strategy_specs_from_dicts(items: list[dict[str, Any]]) -> list[StrategySpec]:
    """Validate raw strategy dictionaries into typed specs."""
    return BrokerConfig(strategies=items).strategies

"""Authentication strategy layer.

Supports multiple authentication methods via pluggable strategies:
- local: Username/password checked by a host-supplied verifier
- oauth: OAuth 2.0 authorization-code flow (GitHub, Google, Discord, ...)
- jwt: Stateless bearer-token claims
- saml: Accepted by configuration, not implemented
"""

from .provider import AuthStrategy, StrategyKind
from .local import LocalAuthStrategy, hash_password, verify_password
from .bearer import BearerTokenStrategy, sign_token
from .oauth import OAuthStrategy, normalize_profile
from .presets import PROVIDER_PRESETS, ProviderPreset
from .state import MemoryStateStore, PendingAuthorization, RedisStateStore, StateStore
from .factory import build_registry, build_strategy

__all__ = [
    "AuthStrategy",
    "StrategyKind",
    "LocalAuthStrategy",
    "hash_password",
    "verify_password",
    "BearerTokenStrategy",
    "sign_token",
    "OAuthStrategy",
    "normalize_profile",
    "PROVIDER_PRESETS",
    "ProviderPreset",
    "StateStore",
    "MemoryStateStore",
    "RedisStateStore",
    "PendingAuthorization",
    "build_strategy",
    "build_registry",
]

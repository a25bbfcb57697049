"""Well-known OAuth provider endpoints.

Presets are configuration only: they fill in the authorize/token/user-info
URLs (and default scopes) of a generic OAuth strategy.
"""

from dataclasses import dataclass
from typing import Optional

from identity_broker.config.settings import OAuthStrategyConfig


@dataclass(frozen=True)
class ProviderPreset:
    authorize_url: str
    token_url: str
    userinfo_url: str
    default_scope: tuple[str, ...] = ()


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    "github": ProviderPreset(
        authorize_url="https://github.com/login/oauth/authorize",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        default_scope=("read:user", "user:email"),
    ),
    "google": ProviderPreset(
        authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v2/userinfo",
        default_scope=("openid", "email", "profile"),
    ),
    "discord": ProviderPreset(
        authorize_url="https://discord.com/oauth2/authorize",
        token_url="https://discord.com/api/oauth2/token",
        userinfo_url="https://discord.com/api/users/@me",
        default_scope=("identify", "email"),
    ),
    "facebook": ProviderPreset(
        authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
        token_url="https://graph.facebook.com/v19.0/oauth/access_token",
        userinfo_url="https://graph.facebook.com/me?fields=id,name,email,picture",
        default_scope=("email", "public_profile"),
    ),
    "instagram": ProviderPreset(
        authorize_url="https://www.instagram.com/oauth/authorize",
        token_url="https://api.instagram.com/oauth/access_token",
        userinfo_url="https://graph.instagram.com/me?fields=id,username,account_type",
        default_scope=("instagram_business_basic",),
    ),
    "tiktok": ProviderPreset(
        authorize_url="https://www.tiktok.com/v2/auth/authorize",
        token_url="https://open.tiktokapis.com/v2/oauth/token/",
        userinfo_url="https://open.tiktokapis.com/v2/user/info/",
        default_scope=("user.info.basic",),
    ),
}


def apply_preset(config: OAuthStrategyConfig, strategy_name: Optional[str] = None) -> OAuthStrategyConfig:
    """Fill missing endpoints and scopes from a provider preset.

    The preset is ``config.provider`` or, failing that, the strategy name.
    Explicit values in ``config`` always win.

    Raises:
        ValueError: If an endpoint is still missing afterwards
    """
    preset_name = config.provider or strategy_name
    preset = PROVIDER_PRESETS.get(preset_name) if preset_name else None
    if config.provider and preset is None:
        raise ValueError(
            f"Unknown OAuth provider preset: {config.provider}. "
            f"Valid options: {', '.join(sorted(PROVIDER_PRESETS))}"
        )

    updates = {}
    if preset is not None:
        updates = {
            "authorize_url": config.authorize_url or preset.authorize_url,
            "token_url": config.token_url or preset.token_url,
            "userinfo_url": config.userinfo_url or preset.userinfo_url,
            "scope": config.scope if config.scope is not None else list(preset.default_scope),
        }
    resolved = config.model_copy(update=updates)

    missing = [
        field for field in ("authorize_url", "token_url", "userinfo_url")
        if not getattr(resolved, field)
    ]
    if missing:
        raise ValueError(f"OAuth strategy '{strategy_name}' requires: {', '.join(missing)}")
    return resolved

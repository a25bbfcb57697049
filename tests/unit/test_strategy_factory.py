"""Unit tests for strategy configuration, presets and the factory"""

import pytest
from pydantic import ValidationError

from identity_broker.config.settings import (
    BearerStrategySpec,
    BrokerConfig,
    LocalStrategySpec,
    OAuthStrategyConfig,
    OAuthStrategySpec,
    SamlStrategySpec,
    Settings,
    strategy_specs_from_dicts,
)
from identity_broker.core.auth import (
    PROVIDER_PRESETS,
    BearerTokenStrategy,
    LocalAuthStrategy,
    MemoryStateStore,
    OAuthStrategy,
    build_registry,
    build_strategy,
)
from identity_broker.core.auth.presets import apply_preset


def _oauth(**overrides) -> OAuthStrategyConfig:
    values = {"client_id": "cid", "client_secret": "cs", "callback_url": "http://h/cb"}
    values.update(overrides)
    return OAuthStrategyConfig(**values)


@pytest.mark.unit
class TestStrategyConfig:
    """Test typed strategy configuration"""

    def test_dicts_validated_by_type_tag(self):
        specs = strategy_specs_from_dicts([
            {"name": "local", "type": "local"},
            {"name": "github", "type": "oauth",
             "config": {"client_id": "c", "client_secret": "s", "callback_url": "http://h/cb"}},
            {"name": "jwt", "type": "jwt", "enabled": False},
        ])

        assert isinstance(specs[0], LocalStrategySpec)
        assert isinstance(specs[1], OAuthStrategySpec)
        assert isinstance(specs[2], BearerStrategySpec)
        assert specs[2].enabled is False

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            strategy_specs_from_dicts([{"name": "x", "type": "kerberos"}])

    def test_oauth_requires_client_credentials(self):
        with pytest.raises(ValidationError):
            strategy_specs_from_dicts([{"name": "github", "type": "oauth", "config": {}}])

    def test_broker_config_from_settings(self):
        settings = Settings(
            secret_key="s3cret",
            session_duration_seconds=60,
            session_cookie_name="sid",
            strategies=[{"name": "local", "type": "local"}],
        )

        config = BrokerConfig.from_settings(settings)

        assert config.secret == "s3cret"
        assert config.session_duration_seconds == 60
        assert config.session_cookie_name == "sid"
        assert [spec.name for spec in config.strategies] == ["local"]

    def test_defaults(self):
        config = BrokerConfig()

        assert config.session_duration_seconds == 24 * 60 * 60
        assert config.strategies == []


@pytest.mark.unit
class TestProviderPresets:
    """Test well-known provider endpoints"""

    def test_strategy_name_selects_preset(self):
        config = apply_preset(_oauth(), "github")

        assert config.authorize_url == PROVIDER_PRESETS["github"].authorize_url
        assert config.token_url == PROVIDER_PRESETS["github"].token_url
        assert config.userinfo_url == PROVIDER_PRESETS["github"].userinfo_url
        assert config.scope == ["read:user", "user:email"]

    def test_explicit_provider_and_overrides(self):
        config = apply_preset(
            _oauth(provider="google", token_url="https://proxy.test/token", scope=["openid"]),
            "corp-login",
        )

        assert config.authorize_url == PROVIDER_PRESETS["google"].authorize_url
        assert config.token_url == "https://proxy.test/token"
        assert config.scope == ["openid"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown OAuth provider preset"):
            apply_preset(_oauth(provider="myspace"), "myspace")

    def test_custom_provider_needs_urls(self):
        with pytest.raises(ValueError, match="authorize_url"):
            apply_preset(_oauth(), "custom")


@pytest.mark.unit
class TestFactory:
    """Test strategy construction"""

    def test_builds_each_kind(self, verifier):
        assert isinstance(build_strategy(LocalStrategySpec(name="local"), verifier=verifier), LocalAuthStrategy)
        assert isinstance(build_strategy(BearerStrategySpec(name="jwt"), secret="s"), BearerTokenStrategy)
        oauth = build_strategy(OAuthStrategySpec(name="github", config=_oauth()))
        assert isinstance(oauth, OAuthStrategy)
        assert oauth.supports_callback is True

    def test_saml_not_implemented(self):
        with pytest.raises(NotImplementedError):
            build_strategy(SamlStrategySpec(name="corp"))

    def test_registry_skips_disabled(self):
        registry = build_registry(
            [
                LocalStrategySpec(name="local"),
                BearerStrategySpec(name="jwt", enabled=False),
                SamlStrategySpec(name="corp", enabled=False),
            ],
            secret="s",
        )

        assert list(registry) == ["local"]

    def test_registry_rejects_duplicate_names(self):
        with pytest.raises(ValueError, match="Duplicate strategy name"):
            build_registry([LocalStrategySpec(name="a"), LocalStrategySpec(name="a")])

    def test_shared_state_store(self, oauth_config):
        store = MemoryStateStore()
        registry = build_registry(
            [OAuthStrategySpec(name="one", config=oauth_config),
             OAuthStrategySpec(name="two", config=oauth_config)],
            state_store=store,
        )

        assert registry["one"].state_store is store
        assert registry["two"].state_store is store

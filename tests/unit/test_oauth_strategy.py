"""Unit tests for OAuthStrategy

The provider is an httpx.MockTransport; no network access.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from identity_broker.api.context import RequestContext
from identity_broker.core.auth import MemoryStateStore, OAuthStrategy, normalize_profile
from identity_broker.domain.models import AuthErrorCode, User


@pytest.fixture
def strategy(oauth_config, provider):
    return OAuthStrategy("example", oauth_config, transport=provider.transport)


async def _issue_state(strategy, request=None) -> str:
    result = await strategy.authenticate(request or RequestContext())
    return parse_qs(urlparse(result.redirect).query)["state"][0]


@pytest.mark.unit
class TestAuthorizationRedirect:
    """Test the authorize step"""

    @pytest.mark.asyncio
    async def test_redirect_url_parameters(self, strategy):
        """Happy path: URL-encoded authorization request"""
        # Act
        result = await strategy.authenticate(RequestContext())

        # Assert
        assert result.success is True
        assert result.redirect.startswith("https://provider.test/authorize?")
        assert "client_id=cid" in result.redirect
        assert "redirect_uri=http%3A%2F%2Fh%2Fcb" in result.redirect
        assert "response_type=code" in result.redirect
        assert "scope=a+b" in result.redirect
        assert "client_secret" not in result.redirect

    @pytest.mark.asyncio
    async def test_state_is_fresh_each_time(self, strategy):
        first = await _issue_state(strategy)
        second = await _issue_state(strategy)

        assert first
        assert second
        assert first != second

    @pytest.mark.asyncio
    async def test_no_network_call(self, strategy, provider):
        await strategy.authenticate(RequestContext())

        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_state_bound_to_store(self, oauth_config, provider):
        store = MemoryStateStore()
        strategy = OAuthStrategy("example", oauth_config, state_store=store, transport=provider.transport)

        await strategy.authenticate(RequestContext())

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_link_intent_recorded(self, oauth_config, provider):
        store = MemoryStateStore()
        strategy = OAuthStrategy("example", oauth_config, state_store=store, transport=provider.transport)
        request = RequestContext(user=User(id="user-1"), link_intent=True)

        state = await _issue_state(strategy, request)
        pending = await store.consume(state)

        assert pending.strategy_name == "example"
        assert pending.link_user_id == "user-1"

    @pytest.mark.asyncio
    async def test_state_store_failure(self, oauth_config):
        class BrokenStore(MemoryStateStore):
            async def save(self, state, pending, ttl_seconds):
                raise ConnectionError("redis down")

        strategy = OAuthStrategy("example", oauth_config, state_store=BrokenStore())

        result = await strategy.authenticate(RequestContext())

        assert result.error == AuthErrorCode.AUTHENTICATION_FAILED


@pytest.mark.unit
class TestCallback:
    """Test the code exchange and profile fetch"""

    @pytest.mark.asyncio
    async def test_successful_callback(self, strategy, provider):
        """Happy path: code exchanged, profile normalized"""
        # Arrange
        state = await _issue_state(strategy)

        # Act
        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        # Assert
        assert result.success is True
        assert result.identity.provider_id == "42"
        assert result.identity.username == "octocat"
        assert result.identity.email == "octo@example.com"
        assert result.identity.profile == provider.profile
        assert result.tokens.access_token == "at-123"
        assert result.tokens.refresh_token == "rt-456"
        assert result.tokens.expires_at is not None
        assert result.link_user_id is None

    @pytest.mark.asyncio
    async def test_token_request_contents(self, strategy, provider):
        state = await _issue_state(strategy)

        await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        token_request, profile_request = provider.requests
        form = parse_qs(token_request.content.decode())
        assert token_request.method == "POST"
        assert form["grant_type"] == ["authorization_code"]
        assert form["client_id"] == ["cid"]
        assert form["client_secret"] == ["csecret"]
        assert form["code"] == ["c0de"]
        assert form["redirect_uri"] == ["http://h/cb"]
        assert profile_request.headers["Authorization"] == "Bearer at-123"

    @pytest.mark.asyncio
    async def test_missing_code(self, strategy, provider):
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"state": state, "error": "access_denied"}))

        assert result.error == AuthErrorCode.MISSING_AUTHORIZATION_CODE
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_unknown_state(self, strategy, provider):
        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": "forged"}))

        assert result.error == AuthErrorCode.INVALID_STATE
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_missing_state(self, strategy):
        result = await strategy.callback(RequestContext(query={"code": "c0de"}))

        assert result.error == AuthErrorCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_state_replay_rejected(self, strategy):
        """Security: a state redeems exactly once"""
        state = await _issue_state(strategy)
        request = RequestContext(query={"code": "c0de", "state": state})

        first = await strategy.callback(request)
        second = await strategy.callback(request)

        assert first.success is True
        assert second.error == AuthErrorCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_state_from_other_strategy_rejected(self, oauth_config, provider):
        store = MemoryStateStore()
        one = OAuthStrategy("one", oauth_config, state_store=store, transport=provider.transport)
        two = OAuthStrategy("two", oauth_config, state_store=store, transport=provider.transport)
        state = await _issue_state(one)

        result = await two.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.INVALID_STATE

    @pytest.mark.asyncio
    async def test_state_validation_disabled(self, oauth_config, provider):
        config = oauth_config.model_copy(update={"validate_state": False})
        strategy = OAuthStrategy("example", config, transport=provider.transport)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": "anything"}))

        assert result.success is True

    @pytest.mark.asyncio
    async def test_token_endpoint_error(self, strategy, provider):
        provider.token_status = 401
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.TOKEN_EXCHANGE_FAILED

    @pytest.mark.asyncio
    async def test_token_response_without_access_token(self, strategy, provider):
        provider.token_body = {"error": "bad_verification_code"}
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.TOKEN_EXCHANGE_FAILED

    @pytest.mark.asyncio
    async def test_profile_endpoint_error(self, strategy, provider):
        provider.profile_status = 500
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.PROFILE_FETCH_FAILED

    @pytest.mark.asyncio
    async def test_profile_without_id(self, strategy, provider):
        provider.profile = {"login": "ghost"}
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.PROFILE_FETCH_FAILED

    @pytest.mark.asyncio
    async def test_timeout_maps_to_exchange_failure(self, oauth_config):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        strategy = OAuthStrategy("example", oauth_config, transport=httpx.MockTransport(handler))
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.TOKEN_EXCHANGE_FAILED

    @pytest.mark.asyncio
    async def test_form_encoded_token_response(self, strategy, provider):
        """Error case: a token response that is not JSON lacks a usable access token"""
        provider.handler_override = lambda request: (
            httpx.Response(200, text="access_token=abc&scope=x") if request.url.path == "/token" else None
        )
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.TOKEN_EXCHANGE_FAILED

    @pytest.mark.asyncio
    async def test_token_response_not_an_object(self, strategy, provider):
        provider.token_body = ["at-123"]
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.TOKEN_EXCHANGE_FAILED

    @pytest.mark.asyncio
    async def test_profile_not_json(self, strategy, provider):
        provider.handler_override = lambda request: (
            httpx.Response(200, content=b"<html>not json</html>") if request.url.path == "/user" else None
        )
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.PROFILE_FETCH_FAILED

    @pytest.mark.asyncio
    async def test_profile_not_an_object(self, strategy, provider):
        provider.profile = ["octocat"]
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.PROFILE_FETCH_FAILED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, oauth_config, provider):
        """Error case: anything else becomes OAuthCallbackFailed, never raised"""

        class BrokenStore(MemoryStateStore):
            async def consume(self, state):
                raise ConnectionError("redis down")

        strategy = OAuthStrategy(
            "example", oauth_config, state_store=BrokenStore(), transport=provider.transport
        )
        state = await _issue_state(strategy)

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.error == AuthErrorCode.OAUTH_CALLBACK_FAILED

    @pytest.mark.asyncio
    async def test_callback_carries_link_user(self, strategy):
        state = await _issue_state(strategy, RequestContext(user=User(id="user-1"), link_intent=True))

        result = await strategy.callback(RequestContext(query={"code": "c0de", "state": state}))

        assert result.link_user_id == "user-1"


@pytest.mark.unit
class TestNormalizeProfile:
    """Test provider profile normalization"""

    def test_sub_and_preferred_username(self):
        identity = normalize_profile({"sub": "abc", "preferred_username": "pat"})

        assert identity.provider_id == "abc"
        assert identity.username == "pat"
        assert identity.email is None

    def test_id_preferred_over_sub(self):
        identity = normalize_profile({"id": 5, "sub": "abc", "username": "u"})

        assert identity.provider_id == "5"
        assert identity.username == "u"

    def test_missing_identity(self):
        assert normalize_profile({"email": "x@example.com"}) is None

"""Tests for ProxyOAuthProvider."""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from quire_gateway.oauth.pending import AuthorizationRequest
from quire_gateway.oauth.provider import CallbackFailure, CallbackRedirect, OAuthEndpointError, ProxyOAuthProvider
from quire_gateway.oauth.token_store import compute_s256_challenge
from tests.conftest import make_requester, upstream_token_handler

VERIFIER = "a" * 43
REDIRECT = "https://app.example/callback"


@pytest.fixture
def provider(upstream_config) -> ProxyOAuthProvider:
    return ProxyOAuthProvider(upstream_config, make_requester(upstream_token_handler))


@pytest.fixture
def client_id(provider: ProxyOAuthProvider) -> str:
    return provider.clients.register(redirect_uris=[REDIRECT], client_name="Test").client_id


def _auth_request(client_id: str, /, **overrides) -> AuthorizationRequest:
    fields = {
        "client_id": client_id,
        "redirect_uri": REDIRECT,
        "code_challenge": compute_s256_challenge(VERIFIER),
        "scopes": ("read",),
        "state": "client-state",
    }
    fields.update(overrides)
    return AuthorizationRequest(**fields)


async def _gateway_code(provider: ProxyOAuthProvider, client_id: str) -> str:
    upstream_url = provider.authorize(_auth_request(client_id))
    state = parse_qs(urlparse(upstream_url).query)["state"][0]
    result = await provider.handle_callback("upstream-code", state)
    assert isinstance(result, CallbackRedirect)
    return parse_qs(urlparse(result.redirect_url).query)["code"][0]


class TestAuthorize:
    def test_redirects_to_upstream_with_fresh_state(self, provider, client_id) -> None:
        url = provider.authorize(_auth_request(client_id))
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://quire.example/oauth?")
        assert query["client_id"] == ["quire-client"]
        assert query["state"][0] != "client-state"
        assert len(provider.pending) == 1

    @pytest.mark.parametrize("overrides,error", [
        ({"redirect_uri": "https://evil.example/cb"}, "invalid_request"),
        ({"code_challenge": ""}, "invalid_request"),
        ({"code_challenge_method": "plain"}, "invalid_request"),
        ({"client_id": "unknown"}, "invalid_client"),
    ])
    def test_rejects_bad_requests(self, provider, client_id, overrides, error) -> None:
        with pytest.raises(OAuthEndpointError) as exc_info:
            provider.authorize(_auth_request(client_id, **overrides))
        assert exc_info.value.error == error
        assert len(provider.pending) == 0

    def test_rejects_other_response_types(self, provider, client_id) -> None:
        with pytest.raises(OAuthEndpointError) as exc_info:
            provider.authorize(_auth_request(client_id), response_type="token")
        assert exc_info.value.error == "unsupported_response_type"


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_redirects_with_gateway_code_and_client_state(self, provider, client_id) -> None:
        url = provider.authorize(_auth_request(client_id))
        state = parse_qs(urlparse(url).query)["state"][0]
        result = await provider.handle_callback("upstream-code", state)
        assert isinstance(result, CallbackRedirect)
        parsed = urlparse(result.redirect_url)
        query = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == REDIRECT
        assert query["state"] == ["client-state"]
        assert query["code"][0]

    @pytest.mark.asyncio
    async def test_unknown_state(self, provider) -> None:
        result = await provider.handle_callback("upstream-code", "bogus")
        assert result == CallbackFailure("invalid_request", "Invalid or expired state parameter")

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, provider, client_id) -> None:
        url = provider.authorize(_auth_request(client_id))
        state = parse_qs(urlparse(url).query)["state"][0]
        assert isinstance(await provider.handle_callback("c", state), CallbackRedirect)
        assert isinstance(await provider.handle_callback("c", state), CallbackFailure)

    @pytest.mark.asyncio
    async def test_upstream_failure(self, upstream_config) -> None:
        provider = ProxyOAuthProvider(upstream_config, make_requester(lambda r: httpx.Response(400)))
        client_id = provider.clients.register(redirect_uris=[REDIRECT]).client_id
        url = provider.authorize(_auth_request(client_id))
        state = parse_qs(urlparse(url).query)["state"][0]
        result = await provider.handle_callback("c", state)
        assert isinstance(result, CallbackFailure)
        assert result.error == "server_error"


class TestAuthorizationCodeGrant:
    @pytest.mark.asyncio
    async def test_issues_tokens_wrapping_upstream(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        issued = provider.exchange_authorization_code(client_id, code, VERIFIER, REDIRECT)
        assert issued.refresh_token is not None
        assert issued.scopes == ("read",)
        auth = provider.verify_access_token(issued.access_token)
        assert auth.upstream_access_token == "quire-access"
        assert auth.client_id == client_id

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        provider.exchange_authorization_code(client_id, code, VERIFIER)
        with pytest.raises(OAuthEndpointError) as exc_info:
            provider.exchange_authorization_code(client_id, code, VERIFIER)
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.asyncio
    async def test_wrong_verifier(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        with pytest.raises(OAuthEndpointError) as exc_info:
            provider.exchange_authorization_code(client_id, code, "b" * 43)
        assert exc_info.value.description == "PKCE verification failed"

    @pytest.mark.asyncio
    async def test_other_client_cannot_redeem(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        other = provider.clients.register(redirect_uris=[REDIRECT]).client_id
        with pytest.raises(OAuthEndpointError) as exc_info:
            provider.exchange_authorization_code(other, code, VERIFIER)
        assert exc_info.value.error == "invalid_grant"

    @pytest.mark.asyncio
    async def test_redirect_uri_mismatch(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        with pytest.raises(OAuthEndpointError):
            provider.exchange_authorization_code(client_id, code, VERIFIER, "https://app.example/other")

    def test_unknown_client(self, provider) -> None:
        with pytest.raises(OAuthEndpointError) as exc_info:
            provider.exchange_authorization_code("nobody", "code", VERIFIER)
        assert exc_info.value.error == "invalid_client"
        assert exc_info.value.status_code == 401


class TestRefreshTokenGrant:
    @pytest.mark.asyncio
    async def test_rotates_refresh_token(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        first = provider.exchange_authorization_code(client_id, code, VERIFIER)
        second = await provider.exchange_refresh_token(client_id, first.refresh_token)
        assert second.access_token != first.access_token
        assert second.refresh_token != first.refresh_token
        with pytest.raises(OAuthEndpointError):
            await provider.exchange_refresh_token(client_id, first.refresh_token)

    @pytest.mark.asyncio
    async def test_upstream_refusal_is_invalid_grant(self, upstream_config) -> None:
        responses = iter([
            httpx.Response(200, json={"access_token": "a", "refresh_token": "r"}),
            httpx.Response(400, json={"error": "invalid_grant"}),
        ])
        provider = ProxyOAuthProvider(upstream_config, make_requester(lambda r: next(responses)))
        client_id = provider.clients.register(redirect_uris=[REDIRECT]).client_id
        code = await _gateway_code(provider, client_id)
        issued = provider.exchange_authorization_code(client_id, code, VERIFIER)
        with pytest.raises(OAuthEndpointError) as exc_info:
            await provider.exchange_refresh_token(client_id, issued.refresh_token)
        assert exc_info.value.error == "invalid_grant"
        assert provider.tokens.get_refresh_token(issued.refresh_token) is not None


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_access_token(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        issued = provider.exchange_authorization_code(client_id, code, VERIFIER)
        provider.revoke(issued.access_token)
        assert provider.verify_access_token(issued.access_token) is None

    @pytest.mark.asyncio
    async def test_refresh_hint_leaves_access_token(self, provider, client_id) -> None:
        code = await _gateway_code(provider, client_id)
        issued = provider.exchange_authorization_code(client_id, code, VERIFIER)
        provider.revoke(issued.access_token, "refresh_token")
        assert provider.verify_access_token(issued.access_token) is not None

"""OAuth authorization server that delegates user login to the upstream provider.

The gateway issues its own codes and tokens to MCP clients. Each gateway
access token wraps an upstream access token, which tool handlers use to call
the upstream API on the user's behalf.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from quire_gateway.client import ResilientRequester
from quire_gateway.oauth.clients import ClientsStore
from quire_gateway.oauth.pending import AuthorizationRequest, PendingAuthorizationStore
from quire_gateway.oauth.token_store import IssuedTokens, ServerTokenStore, verify_pkce
from quire_gateway.oauth.upstream import (
    UpstreamConfig,
    UpstreamOAuthError,
    build_authorize_url,
    exchange_code,
    refresh,
)

logger = logging.getLogger(__name__)


class OAuthEndpointError(Exception):
    """RFC 6749 error returned from /authorize, /token or /register."""

    def __init__(self, error: str, description: Optional[str] = None, status_code: int = 400) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code


@dataclass(frozen=True)
class AuthInfo:
    token: str
    client_id: str
    scopes: tuple[str, ...]
    expires_at: int
    upstream_access_token: str


@dataclass(frozen=True)
class CallbackRedirect:
    redirect_url: str


@dataclass(frozen=True)
class CallbackFailure:
    error: str
    error_description: str


CallbackResult = Union[CallbackRedirect, CallbackFailure]


class ProxyOAuthProvider:
    def __init__(
        self,
        upstream: UpstreamConfig,
        requester: ResilientRequester,
        pending: Optional[PendingAuthorizationStore] = None,
        tokens: Optional[ServerTokenStore] = None,
        clients: Optional[ClientsStore] = None,
    ) -> None:
        self.upstream = upstream
        self.requester = requester
        self.pending = pending or PendingAuthorizationStore()
        self.tokens = tokens or ServerTokenStore()
        self.clients = clients or ClientsStore()

    def authorize(self, request: AuthorizationRequest, response_type: str = "code") -> str:
        """Validate a client's authorization request and return the upstream URL to send the user to."""
        if response_type != "code":
            raise OAuthEndpointError("unsupported_response_type", "Only response_type=code is supported")
        client = self.clients.get(request.client_id)
        if client is None:
            raise OAuthEndpointError("invalid_client", "Unknown client_id")
        if request.redirect_uri not in client.redirect_uris:
            raise OAuthEndpointError("invalid_request", "Invalid redirect_uri")
        if not request.code_challenge:
            raise OAuthEndpointError("invalid_request", "code_challenge is required")
        if request.code_challenge_method != "S256":
            raise OAuthEndpointError("invalid_request", "Only S256 code_challenge_method is supported")

        state = self.pending.create(request)
        logger.info("Authorization started for client %s", request.client_id)
        return build_authorize_url(self.upstream, state)

    async def handle_callback(self, code: str, state: str) -> CallbackResult:
        """Complete the upstream leg and mint a gateway code for the waiting client."""
        request = self.pending.consume(state)
        if request is None:
            return CallbackFailure("invalid_request", "Invalid or expired state parameter")
        try:
            upstream_tokens = await exchange_code(self.upstream, code, self.requester)
        except UpstreamOAuthError as e:
            logger.error("Callback for client %s failed: %s", request.client_id, e.message)
            return CallbackFailure("server_error", "Failed to exchange authorization code with Quire")

        gateway_code = self.tokens.store_auth_code(request, upstream_tokens)
        params = {"code": gateway_code}
        if request.state is not None:
            params["state"] = request.state
        redirect_url = httpx.URL(request.redirect_uri).copy_merge_params(params)
        return CallbackRedirect(str(redirect_url))

    def exchange_authorization_code(self, client_id: str, code: str, code_verifier: Optional[str],
                                    redirect_uri: Optional[str] = None) -> IssuedTokens:
        self._require_client(client_id)
        entry = self.tokens.consume_auth_code(code)
        if entry is None:
            raise OAuthEndpointError("invalid_grant", "Invalid or expired authorization code")
        if entry.request.client_id != client_id:
            raise OAuthEndpointError("invalid_grant", "Authorization code was not issued to this client")
        if redirect_uri and entry.request.redirect_uri != redirect_uri:
            raise OAuthEndpointError("invalid_grant", "redirect_uri mismatch")
        if not code_verifier or not verify_pkce(code_verifier, entry.request.code_challenge,
                                                entry.request.code_challenge_method):
            raise OAuthEndpointError("invalid_grant", "PKCE verification failed")
        return self.tokens.issue(client_id, entry.request.scopes, entry.upstream)

    async def exchange_refresh_token(self, client_id: str, refresh_token: str) -> IssuedTokens:
        self._require_client(client_id)
        entry = self.tokens.get_refresh_token(refresh_token)
        if entry is None:
            raise OAuthEndpointError("invalid_grant", "Invalid refresh token")
        if entry.client_id != client_id:
            raise OAuthEndpointError("invalid_grant", "Refresh token was not issued to this client")
        try:
            upstream_tokens = await refresh(self.upstream, entry.upstream_refresh_token, self.requester)
        except UpstreamOAuthError as e:
            raise OAuthEndpointError("invalid_grant", e.message) from e
        self.tokens.revoke_refresh_token(refresh_token)
        return self.tokens.issue(client_id, entry.scopes, upstream_tokens)

    def verify_access_token(self, token: str) -> Optional[AuthInfo]:
        entry = self.tokens.get_access_token(token)
        if entry is None:
            return None
        return AuthInfo(
            token=token,
            client_id=entry.client_id,
            scopes=entry.scopes,
            expires_at=int(entry.expires_at),
            upstream_access_token=entry.upstream_access_token,
        )

    def revoke(self, token: str, token_type_hint: Optional[str] = None) -> None:
        if token_type_hint == "refresh_token":
            self.tokens.revoke_refresh_token(token)
            return
        self.tokens.revoke_access_token(token)
        self.tokens.revoke_refresh_token(token)

    def purge_expired(self) -> int:
        return self.pending.purge_expired() + self.tokens.purge_expired()

    def _require_client(self, client_id: Optional[str]) -> None:
        if not client_id or self.clients.get(client_id) is None:
            raise OAuthEndpointError("invalid_client", "Unknown client_id", status_code=401)

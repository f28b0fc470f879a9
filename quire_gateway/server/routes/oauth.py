"""OAuth authorization server endpoints proxied to the upstream provider."""
import logging
from typing import Optional

from fastapi import APIRouter, Form, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import ValidationError

from quire_gateway.oauth.pending import AuthorizationRequest
from quire_gateway.oauth.provider import CallbackFailure, OAuthEndpointError, ProxyOAuthProvider
from quire_gateway.oauth.token_store import IssuedTokens
from quire_gateway.server.config import GatewayConfig
from quire_gateway.server.errors import CallbackError, InvalidStateError
from quire_gateway.server.models.oauth import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    ProtectedResourceMetadata,
    TokenResponse,
)

logger = logging.getLogger(__name__)

_TOKEN_FIELDS = ("grant_type", "code", "redirect_uri", "client_id", "code_verifier", "refresh_token")


def _token_response(issued: IssuedTokens) -> TokenResponse:
    return TokenResponse(
        access_token=issued.access_token,
        expires_in=issued.expires_in,
        scope=" ".join(issued.scopes) or None,
        refresh_token=issued.refresh_token,
    )


async def _token_params(request: Request) -> dict[str, Optional[str]]:
    """Token requests arrive form-encoded per RFC 6749; some clients send JSON."""
    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise OAuthEndpointError("invalid_request", "Malformed JSON body")
        if not isinstance(data, dict):
            raise OAuthEndpointError("invalid_request", "Malformed JSON body")
    else:
        data = await request.form()
    return {name: data.get(name) for name in _TOKEN_FIELDS}


def create_oauth_router(config: GatewayConfig, provider: ProxyOAuthProvider) -> APIRouter:
    """Create the OAuth router with injected dependencies."""
    router = APIRouter(tags=["oauth"])
    issuer = config.issuer_url

    @router.get("/.well-known/oauth-authorization-server", response_model=AuthorizationServerMetadata)
    async def authorization_server_metadata() -> AuthorizationServerMetadata:
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        return AuthorizationServerMetadata(
            issuer=issuer,
            authorization_endpoint=f"{issuer}/authorize",
            token_endpoint=f"{issuer}/token",
            registration_endpoint=f"{issuer}/register",
            revocation_endpoint=f"{issuer}/revoke",
        )

    @router.get("/.well-known/oauth-protected-resource", response_model=ProtectedResourceMetadata)
    async def protected_resource_metadata() -> ProtectedResourceMetadata:
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        return ProtectedResourceMetadata(resource=f"{issuer}/mcp", authorization_servers=[issuer])

    @router.post("/register", status_code=status.HTTP_201_CREATED, response_model=ClientRegistrationResponse)
    async def register(request: Request) -> ClientRegistrationResponse:
        """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
        try:
            payload = ClientRegistrationRequest.model_validate(await request.json())
        except (ValueError, ValidationError):
            raise OAuthEndpointError("invalid_client_metadata", "redirect_uris is required")
        client = provider.clients.register(
            redirect_uris=payload.redirect_uris,
            client_name=payload.client_name,
            grant_types=payload.grant_types,
            response_types=payload.response_types,
            token_endpoint_auth_method=payload.token_endpoint_auth_method,
            scope=payload.scope,
        )
        return ClientRegistrationResponse(
            client_id=client.client_id,
            client_id_issued_at=client.client_id_issued_at,
            redirect_uris=list(client.redirect_uris),
            client_name=client.client_name,
            grant_types=list(client.grant_types),
            response_types=list(client.response_types),
            token_endpoint_auth_method=client.token_endpoint_auth_method,
            scope=client.scope,
        )

    @router.get("/authorize")
    async def authorize(
        client_id: str = "",
        redirect_uri: str = "",
        response_type: str = "",
        code_challenge: str = "",
        code_challenge_method: str = "S256",
        scope: Optional[str] = None,
        state: Optional[str] = None,
    ) -> RedirectResponse:
        request = AuthorizationRequest(
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            scopes=tuple(scope.split()) if scope else (),
            state=state,
        )
        upstream_url = provider.authorize(request, response_type=response_type)
        return RedirectResponse(upstream_url, status_code=status.HTTP_302_FOUND)

    @router.get("/oauth/callback")
    async def oauth_callback(
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> Response:
        if error:
            logger.error("Upstream authorization error: %s", error)
            raise CallbackError("Authorization Failed", error_description or error)
        if not code or not state:
            raise CallbackError("Invalid Request", "Missing code or state parameter.")

        result = await provider.handle_callback(code, state)
        if isinstance(result, CallbackFailure):
            if result.error == "invalid_request":
                raise InvalidStateError(result.error_description)
            raise CallbackError("Authorization Failed", result.error_description)
        return RedirectResponse(result.redirect_url, status_code=status.HTTP_302_FOUND)

    @router.post("/token", response_model=TokenResponse, response_model_exclude_none=True)
    async def token(request: Request) -> TokenResponse:
        params = await _token_params(request)
        grant_type = params["grant_type"]
        if grant_type == "authorization_code":
            if not params["code"]:
                raise OAuthEndpointError("invalid_request", "code is required")
            issued = provider.exchange_authorization_code(
                client_id=params["client_id"],
                code=params["code"],
                code_verifier=params["code_verifier"],
                redirect_uri=params["redirect_uri"],
            )
        elif grant_type == "refresh_token":
            if not params["refresh_token"]:
                raise OAuthEndpointError("invalid_request", "refresh_token is required")
            issued = await provider.exchange_refresh_token(params["client_id"], params["refresh_token"])
        else:
            raise OAuthEndpointError("unsupported_grant_type", f"Unsupported grant_type: {grant_type}")
        return _token_response(issued)

    @router.post("/revoke")
    async def revoke(token: str = Form(""), token_type_hint: Optional[str] = Form(None)) -> JSONResponse:
        """Token revocation (RFC 7009). Unknown tokens are not an error."""
        if token:
            provider.revoke(token, token_type_hint)
        return JSONResponse(status_code=status.HTTP_200_OK, content={})

    return router


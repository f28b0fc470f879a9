"""OAuth proxy in front of the Quire identity provider."""
from .clients import ClientsStore, RegisteredClient
from .pending import AuthorizationRequest, PendingAuthorizationStore
from .provider import (
    AuthInfo,
    CallbackFailure,
    CallbackRedirect,
    OAuthEndpointError,
    ProxyOAuthProvider,
)
from .token_store import ServerTokenStore, verify_pkce
from .upstream import (
    OAuthErrorCode,
    TokenSet,
    UpstreamConfig,
    UpstreamOAuthError,
    build_authorize_url,
    exchange_code,
    generate_state,
    is_expired,
    refresh,
)

__all__ = [
    "ClientsStore", "RegisteredClient",
    "AuthorizationRequest", "PendingAuthorizationStore",
    "AuthInfo", "CallbackFailure", "CallbackRedirect", "OAuthEndpointError", "ProxyOAuthProvider",
    "ServerTokenStore", "verify_pkce",
    "OAuthErrorCode", "TokenSet", "UpstreamConfig", "UpstreamOAuthError",
    "build_authorize_url", "exchange_code", "generate_state", "is_expired", "refresh",
]

"""Pydantic models for request/response validation."""
from quire_gateway.server.models.rpc import JsonRpcErrorDetail, JsonRpcErrorResponse, rpc_error_body
from quire_gateway.server.models.oauth import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    OAuthErrorResponse,
    ProtectedResourceMetadata,
    TokenResponse,
)
from quire_gateway.server.models.responses import HealthResponse

__all__ = [
    "JsonRpcErrorDetail",
    "JsonRpcErrorResponse",
    "rpc_error_body",
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "OAuthErrorResponse",
    "ProtectedResourceMetadata",
    "TokenResponse",
    "HealthResponse",
]

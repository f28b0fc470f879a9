"""OAuth wire models."""
from typing import Annotated, Literal, Optional
from pydantic import BaseModel, Field


class ClientRegistrationRequest(BaseModel):
    redirect_uris: Annotated[list[str], Field(min_length=1)]
    client_name: Optional[str] = None
    grant_types: Optional[list[str]] = None
    response_types: Optional[list[str]] = None
    token_endpoint_auth_method: str = "none"
    scope: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    client_id: Annotated[str, Field()]
    client_id_issued_at: Annotated[int, Field()]
    redirect_uris: Annotated[list[str], Field()]
    client_name: Optional[str] = None
    grant_types: Annotated[list[str], Field()]
    response_types: Annotated[list[str], Field()]
    token_endpoint_auth_method: Annotated[str, Field()]
    scope: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: Annotated[str, Field()]
    token_type: Literal["bearer"] = "bearer"
    expires_in: Annotated[int, Field()]
    scope: Optional[str] = None
    refresh_token: Optional[str] = None


class OAuthErrorResponse(BaseModel):
    error: Annotated[str, Field()]
    error_description: Optional[str] = None


class AuthorizationServerMetadata(BaseModel):
    issuer: Annotated[str, Field()]
    authorization_endpoint: Annotated[str, Field()]
    token_endpoint: Annotated[str, Field()]
    registration_endpoint: Annotated[str, Field()]
    revocation_endpoint: Annotated[str, Field()]
    response_types_supported: list[str] = ["code"]
    grant_types_supported: list[str] = ["authorization_code", "refresh_token"]
    token_endpoint_auth_methods_supported: list[str] = ["none", "client_secret_post"]
    code_challenge_methods_supported: list[str] = ["S256"]


class ProtectedResourceMetadata(BaseModel):
    resource: Annotated[str, Field()]
    authorization_servers: Annotated[list[str], Field()]
    bearer_methods_supported: list[str] = ["header"]

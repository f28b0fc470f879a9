"""Bearer token verification for the protocol endpoint."""
import logging
from typing import Optional
from fastapi import Request

from quire_gateway.oauth.provider import AuthInfo, ProxyOAuthProvider

logger = logging.getLogger(__name__)


class BearerAuthError(Exception):
    def __init__(self, description: str, resource_metadata_url: str) -> None:
        super().__init__(description)
        self.description = description
        self.resource_metadata_url = resource_metadata_url

    @property
    def www_authenticate(self) -> str:
        return (f'Bearer error="invalid_token", error_description="{self.description}", '
                f'resource_metadata="{self.resource_metadata_url}"')


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class BearerAuth:
    """FastAPI dependency resolving the Authorization header to :class:`AuthInfo`.

    The result is also stored on ``request.state.auth`` so code running below
    the router (protocol handlers) can reach the upstream access token.
    """

    def __init__(self, provider: ProxyOAuthProvider, resource_metadata_url: str) -> None:
        self._provider = provider
        self._resource_metadata_url = resource_metadata_url

    async def __call__(self, request: Request) -> AuthInfo:
        token = _bearer_token(request.headers.get("Authorization"))
        if token is None:
            raise BearerAuthError("Missing Authorization header", self._resource_metadata_url)
        auth = self._provider.verify_access_token(token)
        if auth is None:
            logger.info("Rejected request with invalid or expired token")
            raise BearerAuthError("Invalid or expired token", self._resource_metadata_url)
        request.state.auth = auth
        return auth

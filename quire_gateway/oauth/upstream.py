"""Authorization-code flow against the upstream identity provider."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field, ValidationError

from quire_gateway.client import ResilientRequester, UpstreamError

logger = logging.getLogger(__name__)

QUIRE_OAUTH_AUTHORIZE_URL = "https://quire.io/oauth"
QUIRE_OAUTH_TOKEN_URL = "https://quire.io/oauth/token"
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)


@dataclass(frozen=True)
class UpstreamConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    authorize_url: str = QUIRE_OAUTH_AUTHORIZE_URL
    token_url: str = QUIRE_OAUTH_TOKEN_URL


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class OAuthErrorCode(str, Enum):
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    REFRESH_FAILED = "REFRESH_FAILED"
    INVALID_RESPONSE = "INVALID_RESPONSE"


class UpstreamOAuthError(Exception):
    def __init__(self, message: str, code: OAuthErrorCode, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class _TokenResponse(BaseModel):
    access_token: Annotated[str, Field(min_length=1)]
    token_type: Optional[str] = None
    expires_in: Optional[Annotated[int, Field(gt=0)]] = None
    refresh_token: Optional[str] = None


def generate_state() -> str:
    """128 bits of randomness as 32 hex characters."""
    return secrets.token_hex(16)


def build_authorize_url(config: UpstreamConfig, state: str) -> str:
    query = urlencode({
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "state": state,
    })
    separator = "&" if "?" in config.authorize_url else "?"
    return f"{config.authorize_url}{separator}{query}"


def is_expired(token: TokenSet, now: Optional[datetime] = None) -> bool:
    """True once ``now`` is within the expiry buffer of the token's expiry. No expiry means never."""
    if token.expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now >= token.expires_at - TOKEN_EXPIRY_BUFFER


def _parse_tokens(resp: httpx.Response, now: Optional[datetime] = None) -> TokenSet:
    try:
        parsed = _TokenResponse.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        raise UpstreamOAuthError("Invalid token response from upstream", OAuthErrorCode.INVALID_RESPONSE,
                                 resp.status_code) from e
    expires_at = None
    if parsed.expires_in is not None:
        expires_at = (now or datetime.now(timezone.utc)) + timedelta(seconds=parsed.expires_in)
    return TokenSet(access_token=parsed.access_token, refresh_token=parsed.refresh_token, expires_at=expires_at)


async def exchange_code(config: UpstreamConfig, code: str, requester: ResilientRequester) -> TokenSet:
    """Trade an upstream authorization code for tokens. Retryable failures are retried."""
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "redirect_uri": config.redirect_uri,
    }
    try:
        resp = await requester.post(config.token_url, data=data)
    except UpstreamError as e:
        logger.error("Upstream code exchange failed: %s (%s)", e.message, e.code.value)
        raise UpstreamOAuthError(f"Token exchange failed: {e.message}", OAuthErrorCode.TOKEN_EXCHANGE_FAILED,
                                 e.status_code) from e
    return _parse_tokens(resp)


async def refresh(config: UpstreamConfig, refresh_token: str, requester: ResilientRequester) -> TokenSet:
    """Single-attempt refresh. Any transport or status failure is REFRESH_FAILED."""
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
    }
    try:
        resp = await requester.post(config.token_url, data=data, retry=False)
    except UpstreamError as e:
        logger.warning("Upstream token refresh failed: %s (%s)", e.message, e.code.value)
        raise UpstreamOAuthError(f"Token refresh failed: {e.message}", OAuthErrorCode.REFRESH_FAILED,
                                 e.status_code) from e
    return _parse_tokens(resp)

"""Gateway-issued authorization codes, access tokens and refresh tokens."""

import base64
import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from quire_gateway.oauth.pending import AuthorizationRequest
from quire_gateway.oauth.upstream import TokenSet

logger = logging.getLogger(__name__)

AUTH_CODE_TTL = 10 * 60
ACCESS_TOKEN_TTL = 60 * 60
REFRESH_TOKEN_TTL = 30 * 24 * 60 * 60


def generate_secure_token() -> str:
    return secrets.token_urlsafe(32)


def compute_s256_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(verifier: str, challenge: str, method: str = "S256") -> bool:
    if method != "S256":
        return False
    try:
        computed = compute_s256_challenge(verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed, challenge)


@dataclass(frozen=True)
class AuthCodeEntry:
    request: AuthorizationRequest
    upstream: TokenSet
    expires_at: float


@dataclass(frozen=True)
class AccessTokenEntry:
    client_id: str
    scopes: tuple[str, ...]
    upstream_access_token: str
    upstream_refresh_token: Optional[str]
    expires_at: float


@dataclass(frozen=True)
class RefreshTokenEntry:
    client_id: str
    scopes: tuple[str, ...]
    upstream_refresh_token: str
    expires_at: float


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    expires_in: int
    scopes: tuple[str, ...] = ()
    refresh_token: Optional[str] = None


class ServerTokenStore:
    """In-memory token bookkeeping. Expiry times are wall-clock epoch seconds."""

    def __init__(
        self,
        auth_code_ttl: int = AUTH_CODE_TTL,
        access_token_ttl: int = ACCESS_TOKEN_TTL,
        refresh_token_ttl: int = REFRESH_TOKEN_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._auth_code_ttl = auth_code_ttl
        self._access_token_ttl = access_token_ttl
        self._refresh_token_ttl = refresh_token_ttl
        self._clock = clock
        self._codes: dict[str, AuthCodeEntry] = {}
        self._access: dict[str, AccessTokenEntry] = {}
        self._refresh: dict[str, RefreshTokenEntry] = {}

    def store_auth_code(self, request: AuthorizationRequest, upstream: TokenSet) -> str:
        code = generate_secure_token()
        self._codes[code] = AuthCodeEntry(request, upstream, self._clock() + self._auth_code_ttl)
        return code

    def consume_auth_code(self, code: str) -> Optional[AuthCodeEntry]:
        entry = self._codes.pop(code, None)
        if entry is None or self._clock() > entry.expires_at:
            return None
        return entry

    def issue(self, client_id: str, scopes: tuple[str, ...], upstream: TokenSet) -> IssuedTokens:
        """Mint an access token and, when upstream gave one, a refresh token wrapping it."""
        now = self._clock()
        access_token = generate_secure_token()
        self._access[access_token] = AccessTokenEntry(
            client_id=client_id,
            scopes=scopes,
            upstream_access_token=upstream.access_token,
            upstream_refresh_token=upstream.refresh_token,
            expires_at=now + self._access_token_ttl,
        )
        refresh_token = None
        if upstream.refresh_token:
            refresh_token = generate_secure_token()
            self._refresh[refresh_token] = RefreshTokenEntry(
                client_id=client_id,
                scopes=scopes,
                upstream_refresh_token=upstream.refresh_token,
                expires_at=now + self._refresh_token_ttl,
            )
        return IssuedTokens(access_token, self._access_token_ttl, scopes, refresh_token)

    def get_access_token(self, token: str) -> Optional[AccessTokenEntry]:
        entry = self._access.get(token)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._access[token]
            return None
        return entry

    def get_refresh_token(self, token: str) -> Optional[RefreshTokenEntry]:
        entry = self._refresh.get(token)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._refresh[token]
            return None
        return entry

    def revoke_access_token(self, token: str) -> bool:
        return self._access.pop(token, None) is not None

    def revoke_refresh_token(self, token: str) -> bool:
        return self._refresh.pop(token, None) is not None

    def purge_expired(self) -> int:
        now = self._clock()
        removed = 0
        for table in (self._codes, self._access, self._refresh):
            expired = [k for k, v in table.items() if now > v.expires_at]
            for key in expired:
                del table[key]
            removed += len(expired)
        if removed:
            logger.info("Purged %d expired code(s)/token(s)", removed)
        return removed


"""Gateway configuration."""
import ipaddress
import logging
import os
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from quire_gateway.client.resilient import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, INITIAL_RETRY_DELAY
from quire_gateway.oauth.pending import PENDING_REQUEST_TTL
from quire_gateway.oauth.token_store import ACCESS_TOKEN_TTL, AUTH_CODE_TTL, REFRESH_TOKEN_TTL
from quire_gateway.oauth.upstream import QUIRE_OAUTH_AUTHORIZE_URL, QUIRE_OAUTH_TOKEN_URL, UpstreamConfig
from quire_gateway.sessions.manager import MAX_SESSIONS, SESSION_IDLE_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001
_LOOPBACK_HOSTS = frozenset(("localhost", "127.0.0.1", "::1"))


@dataclass(frozen=True)
class RetryConfig:
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay: float = INITIAL_RETRY_DELAY


@dataclass(frozen=True)
class SessionConfig:
    """Session cache sizing and lifecycle timings, in seconds."""

    max_sessions: int = MAX_SESSIONS
    idle_timeout: float = SESSION_IDLE_TIMEOUT
    sweep_interval: float = 5 * 60
    shutdown_grace: float = 5.0


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int = 100


@dataclass(frozen=True)
class TokenLifetimes:
    pending_request: int = PENDING_REQUEST_TTL
    auth_code: int = AUTH_CODE_TTL
    access_token: int = ACCESS_TOKEN_TTL
    refresh_token: int = REFRESH_TOKEN_TTL


@dataclass(frozen=True)
class GatewayConfig:
    upstream: UpstreamConfig
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    issuer_url: str = f"http://localhost:{DEFAULT_PORT}"
    retry: RetryConfig = field(default_factory=RetryConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    tokens: TokenLifetimes = field(default_factory=TokenLifetimes)

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.issuer_url}/.well-known/oauth-protected-resource"


def _is_loopback(hostname: Optional[str]) -> bool:
    if not hostname:
        return False
    if hostname in _LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(hostname).is_loopback
    except ValueError:
        return False


def validate_issuer_url(issuer_url: str) -> str:
    """Strip a trailing slash and refuse plain HTTP outside loopback."""
    parsed = urlparse(issuer_url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"MCP_ISSUER_URL is not a valid URL: {issuer_url!r}")
    if parsed.scheme == "http" and not _is_loopback(parsed.hostname):
        raise ValueError("MCP_ISSUER_URL must use https unless it points at localhost")
    return issuer_url.rstrip("/")


def _parse_int(value: Optional[str], default: int, name: str) -> int:
    """Parse an integer environment variable, warning and falling back on garbage."""
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Unrecognised integer value %r for %s, using default %s.", value, name, default)
        return default


def load_config_from_env() -> GatewayConfig:
    client_id = os.environ.get("QUIRE_OAUTH_CLIENT_ID")
    client_secret = os.environ.get("QUIRE_OAUTH_CLIENT_SECRET")
    missing = []
    if not client_id:
        missing.append("QUIRE_OAUTH_CLIENT_ID")
    if not client_secret:
        missing.append("QUIRE_OAUTH_CLIENT_SECRET")
    if missing:
        raise ValueError(f"Missing: {', '.join(missing)}")

    host = os.environ.get("MCP_SERVER_HOST", DEFAULT_HOST)
    port = _parse_int(os.environ.get("MCP_SERVER_PORT"), DEFAULT_PORT, "MCP_SERVER_PORT")
    issuer_url = validate_issuer_url(os.environ.get("MCP_ISSUER_URL") or f"http://localhost:{port}")
    redirect_uri = os.environ.get("QUIRE_OAUTH_REDIRECT_URI") or f"{issuer_url}/oauth/callback"

    return GatewayConfig(
        upstream=UpstreamConfig(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            authorize_url=QUIRE_OAUTH_AUTHORIZE_URL,
            token_url=QUIRE_OAUTH_TOKEN_URL,
        ),
        host=host,
        port=port,
        issuer_url=issuer_url,
    )

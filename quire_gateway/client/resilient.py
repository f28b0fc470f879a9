"""Outbound HTTP with a per-attempt deadline, error classification and retry/backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .exceptions import ErrorCode, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
INITIAL_RETRY_DELAY = 1.0

_STATUS_CODES: dict[int, tuple[ErrorCode, bool]] = {
    401: (ErrorCode.UNAUTHORIZED, False),
    403: (ErrorCode.FORBIDDEN, False),
    404: (ErrorCode.NOT_FOUND, False),
    429: (ErrorCode.RATE_LIMITED, True),
}


def classify_status(status_code: int) -> tuple[ErrorCode, bool]:
    """Map a non-2xx status to (code, retryable)."""
    if status_code in _STATUS_CODES:
        return _STATUS_CODES[status_code]
    if status_code >= 500:
        return ErrorCode.SERVER_ERROR, True
    return ErrorCode.UNKNOWN, False


def backoff_delay(attempt: int, initial_delay: float = INITIAL_RETRY_DELAY,
                  retry_after: float | None = None) -> float:
    """Delay before retry number ``attempt`` (0-based). A server hint wins over the exponential schedule."""
    if retry_after is not None and retry_after > 0:
        return float(retry_after)
    return initial_delay * (2 ** attempt)


def _parse_retry_after(resp: httpx.Response) -> float | None:
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return f"HTTP {resp.status_code}"


def error_from_response(resp: httpx.Response) -> UpstreamError:
    code, retryable = classify_status(resp.status_code)
    return UpstreamError(_error_message(resp), code, status_code=resp.status_code,
                         retryable=retryable, retry_after=_parse_retry_after(resp))


class ResilientRequester:
    """Wraps an httpx.AsyncClient so every upstream call gets the same failure handling.

    Each attempt is bounded by ``timeout`` seconds. Non-2xx responses and transport
    failures are turned into :class:`UpstreamError`; retryable ones (429, 5xx and
    timeouts) are retried up to ``max_retries`` times with exponential backoff starting at
    ``initial_delay``, or after the server's Retry-After hint when one is given.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = INITIAL_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._sleep = sleep

    async def __aenter__(self) -> "ResilientRequester":
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20))
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Any, exc_tb: Any) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def post(self, url: str, retry: bool = True, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, retry=retry, **kwargs)

    async def get(self, url: str, retry: bool = True, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, retry=retry, **kwargs)

    async def request(self, method: str, url: str, retry: bool = True, **kwargs: Any) -> httpx.Response:
        """Send a request, returning the 2xx response or raising the final UpstreamError."""
        if self._client is None:
            raise RuntimeError("Requester not initialized")
        attempt = 0
        while True:
            try:
                resp = await self._attempt(method, url, **kwargs)
            except UpstreamError as e:
                err = e
            else:
                if resp.is_success:
                    return resp
                err = error_from_response(resp)

            if not (retry and err.retryable and attempt < self._max_retries):
                raise err
            delay = backoff_delay(attempt, self._initial_delay, err.retry_after)
            logger.warning("%s %s failed (%s), retrying in %.1fs (%d/%d)",
                           method, url, err.code.value, delay, attempt + 1, self._max_retries)
            await self._sleep(delay)
            attempt += 1

    async def _attempt(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await asyncio.wait_for(self._client.request(method, url, **kwargs), self._timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise UpstreamError(f"Request timed out after {self._timeout:g}s", ErrorCode.TIMEOUT,
                                retryable=True) from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Network error: {e}", ErrorCode.NETWORK_ERROR, retryable=False) from e
        except httpx.HTTPError as e:
            raise UpstreamError(str(e) or "Unknown error", ErrorCode.UNKNOWN, retryable=False) from e

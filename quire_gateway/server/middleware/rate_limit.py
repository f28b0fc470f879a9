"""Rate limiting middleware."""
import time
from collections import defaultdict
from typing import Callable, Iterable, Optional
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from quire_gateway.server.middleware.origin import matches_any

RATE_LIMITED_PATHS = ("/mcp", "/oauth")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window per client IP, applied to ``paths`` only."""

    def __init__(self, app: ASGIApp, requests_per_minute: int = 100,
                 paths: Iterable[str] = RATE_LIMITED_PATHS,
                 clock: Optional[Callable[[], float]] = None) -> None:
        super().__init__(app)
        self._requests_per_minute = requests_per_minute
        self._paths = tuple(paths)
        self._clock = clock or time.time
        self._request_times: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        if not matches_any(request.url.path, self._paths):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = self._clock()
        minute_ago = now - 60

        self._request_times[client_ip] = [t for t in self._request_times[client_ip] if t > minute_ago]
        current_count = len(self._request_times[client_ip])

        if current_count >= self._requests_per_minute:
            retry_after = max(1, int(min(self._request_times[client_ip]) + 60 - now))
            return JSONResponse(
                status_code=429,
                content={"error": "rate_limited", "error_description": "Too many requests, please try again later"},
                headers={"Retry-After": str(retry_after)},
            )

        self._request_times[client_ip].append(now)
        response = await call_next(request)

        remaining = self._requests_per_minute - len(self._request_times[client_ip])
        response.headers["X-RateLimit-Limit"] = str(self._requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

"""Request logging middleware."""
import logging
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger("quire_gateway.access")


def _session_label(request: Request) -> str:
    session_id = request.headers.get("mcp-session-id")
    return session_id[:8] if session_id else "-"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs method, path, status and timing. Query strings and headers are never logged."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        start_time = time.perf_counter()
        logger.info("Request: %s %s session=%s", request.method, request.url.path, _session_label(request))

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info("Response: %s %s status=%d duration=%.2fms", request.method, request.url.path, response.status_code, duration_ms)
        return response

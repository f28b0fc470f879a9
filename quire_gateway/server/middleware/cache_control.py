"""Forbid caching of OAuth and protocol responses."""
from typing import Callable, Iterable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from quire_gateway.server.middleware.origin import matches_any

NO_STORE_PATHS = ("/oauth", "/mcp", "/authorize", "/token", "/register", "/revoke", "/.well-known")
NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


class NoStoreMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, paths: Iterable[str] = NO_STORE_PATHS) -> None:
        super().__init__(app)
        self._paths = tuple(paths)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        response = await call_next(request)
        if matches_any(request.url.path, self._paths):
            response.headers.update(NO_STORE_HEADERS)
        return response

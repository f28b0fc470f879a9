"""Cross-origin policy: OAuth endpoints are browser-reachable, everything else is not."""
from typing import Callable, Iterable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

CORS_ALLOWED_PATHS = (
    "/.well-known/oauth-authorization-server",
    "/.well-known/oauth-protected-resource",
    "/authorize",
    "/token",
    "/register",
    "/revoke",
    "/oauth/callback",
)


def matches_path_boundary(path: str, prefix: str) -> bool:
    """``/authorize`` matches ``/authorize`` and ``/authorize/x`` but not ``/authorize-admin``."""
    if path == prefix:
        return True
    if prefix.endswith("/"):
        return path.startswith(prefix)
    return path.startswith(prefix + "/")


def matches_any(path: str, prefixes: Iterable[str]) -> bool:
    return any(matches_path_boundary(path, p) for p in prefixes)


def is_cors_allowed_path(path: str) -> bool:
    return matches_any(path, CORS_ALLOWED_PATHS)


class OriginPolicyMiddleware(BaseHTTPMiddleware):
    """Echo CORS headers for allow-listed paths and refuse cross-origin requests elsewhere."""

    def __init__(self, app: ASGIApp, allowed_paths: Iterable[str] = CORS_ALLOWED_PATHS) -> None:
        super().__init__(app)
        self._allowed_paths = tuple(allowed_paths)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        origin = request.headers.get("Origin")
        if not origin:
            return await call_next(request)
        if not matches_any(request.url.path, self._allowed_paths):
            return JSONResponse(status_code=403, content={"error": "Cross-origin requests not allowed"})

        cors_headers = {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
            "Access-Control-Max-Age": "86400",
            "Vary": "Origin",
        }
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=cors_headers)
        response = await call_next(request)
        response.headers.update(cors_headers)
        return response

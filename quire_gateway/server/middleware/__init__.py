"""Server middleware."""
from quire_gateway.server.middleware.cache_control import NoStoreMiddleware
from quire_gateway.server.middleware.logging import RequestLoggingMiddleware
from quire_gateway.server.middleware.origin import OriginPolicyMiddleware, is_cors_allowed_path
from quire_gateway.server.middleware.rate_limit import RateLimitMiddleware

__all__ = [
    "NoStoreMiddleware",
    "OriginPolicyMiddleware",
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "is_cors_allowed_path",
]

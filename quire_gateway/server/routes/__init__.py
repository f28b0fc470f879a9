"""Route handlers for gateway endpoints."""
from quire_gateway.server.routes.health import create_health_router
from quire_gateway.server.routes.mcp import create_mcp_router
from quire_gateway.server.routes.oauth import create_oauth_router
__all__ = [
    "create_health_router",
    "create_mcp_router",
    "create_oauth_router",
]

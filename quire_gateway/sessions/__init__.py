"""Protocol session lifecycle: bounded cache, transports and routing."""
from .cache import BoundedEvictionCache
from .manager import Session, SessionManager, is_initialize_request
from .transport import (
    MCP_SESSION_HEADER,
    McpSessionTransport,
    McpTransportFactory,
    SessionTransport,
    TransportFactory,
)

__all__ = [
    "BoundedEvictionCache",
    "Session", "SessionManager", "is_initialize_request",
    "MCP_SESSION_HEADER", "McpSessionTransport", "McpTransportFactory",
    "SessionTransport", "TransportFactory",
]

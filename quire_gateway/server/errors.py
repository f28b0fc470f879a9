"""Exception types rendered as JSON-RPC error envelopes."""
from typing import Optional

JSONRPC_INVALID_REQUEST = -32600
JSONRPC_INTERNAL_ERROR = -32603


class GatewayError(Exception):
    status_code: int = 500
    rpc_code: int = JSONRPC_INTERNAL_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequestError(GatewayError):
    status_code = 400
    rpc_code = JSONRPC_INVALID_REQUEST
    default_message = "Bad Request: No valid session ID provided"


class SessionNotFoundError(GatewayError):
    status_code = 404
    rpc_code = JSONRPC_INVALID_REQUEST
    default_message = "Session not found"


class ServiceUnavailableError(GatewayError):
    status_code = 503
    rpc_code = JSONRPC_INVALID_REQUEST
    default_message = "Server is shutting down"


class InternalError(GatewayError):
    status_code = 500
    rpc_code = JSONRPC_INTERNAL_ERROR
    default_message = "Internal server error"


class CallbackError(Exception):
    """OAuth callback failure, rendered as an HTML page."""
    status_code: int = 400

    def __init__(self, title: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.title = title
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidStateError(CallbackError):
    status_code = 400

    def __init__(self, message: str = "Invalid or expired state parameter") -> None:
        super().__init__("Authorization Failed", message)

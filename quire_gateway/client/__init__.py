"""Resilient outbound HTTP for upstream calls."""
from .exceptions import ErrorCode, UpstreamError
from .resilient import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    INITIAL_RETRY_DELAY,
    ResilientRequester,
    backoff_delay,
    classify_status,
)

__all__ = [
    "ErrorCode", "UpstreamError",
    "ResilientRequester", "backoff_delay", "classify_status",
    "DEFAULT_MAX_RETRIES", "DEFAULT_TIMEOUT", "INITIAL_RETRY_DELAY",
]

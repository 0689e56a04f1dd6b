"""Web adapter for REST and WebSocket endpoints.

This module provides the FastAPI application serving placements, canvas
reads, registration and the live observer stream.
"""

from gridplace.adapters.web.server import (
    RateLimiter,
    WebAdapter,
    create_web_adapter,
    http_error,
)

__all__ = [
    "RateLimiter",
    "WebAdapter",
    "create_web_adapter",
    "http_error",
]

"""
Middleware components for request processing.

This package contains middleware for request context (request ID, IP
address, user agent) that routes copy into security event metadata.
"""

from inkguard.middleware.request_context import RequestContextMiddleware, request_metadata

__all__ = [
    "RequestContextMiddleware",
    "request_metadata",
]

"""
Request context for security event metadata.

Sets request.state.request_id, ip_address and user_agent on every request
and echoes the request id back as X-Request-ID. A well-formed inbound
X-Request-ID (the application layer forwards its own on trigger webhooks)
is kept so events can be joined with upstream logs.
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from inkguard.config import settings
from inkguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _inbound_request_id(request: Request) -> str | None:
    candidate = request.headers.get(REQUEST_ID_HEADER)
    if not candidate:
        return None
    try:
        return str(uuid.UUID(candidate))
    except ValueError:
        return None


def client_ip(request: Request) -> str | None:
    """
    Peer address, or the first X-Forwarded-For hop when the peer is a
    configured proxy and forwarding is trusted.
    """
    peer = request.client.host if request.client else None
    if not settings.TRUST_X_FORWARDED_FOR or peer not in settings.TRUSTED_PROXY_IPS:
        return peer

    forwarded_for = request.headers.get("x-forwarded-for")
    if not forwarded_for:
        return peer
    return forwarded_for.split(",")[0].strip() or peer


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = _inbound_request_id(request) or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = client_ip(request)
        request.state.user_agent = request.headers.get("user-agent")

        logger.debug(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def request_metadata(request: Request) -> dict:
    """Request context fields for event metadata."""
    return {
        "request_id": getattr(request.state, "request_id", None),
        "ip_address": getattr(request.state, "ip_address", None),
        "user_agent": getattr(request.state, "user_agent", None),
    }

"""
ASGI middleware applied to every proxy response: hardened headers and a
per-request id for log correlation.
"""

from mailbridge.middleware.request_context import (
    RequestContext,
    RequestContextMiddleware,
    get_request_context,
    get_request_id,
)
from mailbridge.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "RequestContext",
    "RequestContextMiddleware",
    "SecurityHeadersMiddleware",
    "get_request_context",
    "get_request_id",
]

"""
Security headers middleware.

WHY: Responses carry mailbox content and quote HTML. Browsers must neither
cache them nor render them as a page, since the proxy only ever answers
JSON to the widget's fetch calls.
"""

from typing import Callable, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# Applied to every response
SECURITY_HEADERS: Dict[str, str] = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    # JSON only: nothing may load, and nothing may frame a response
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
}

# Applied to /api responses, which hold mail data
NO_CACHE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-store, private",
    "Pragma": "no-cache",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds security headers to all responses.

    - Strict-Transport-Security: HTTPS only
    - X-Content-Type-Options / Content-Security-Policy: a response is never
      interpreted as anything but its declared JSON
    - Cache-Control on /api: mail content is never stored by browsers or
      intermediaries
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value

        if request.url.path.startswith("/api"):
            for name, value in NO_CACHE_HEADERS.items():
                response.headers[name] = value

        return response

"""
Request context middleware.

WHAT: Gives every request an id and makes it available to any code running
on behalf of that request.

WHY: The proxy keeps no records, so logs are the only trace of a request.
A shared request id ties the log lines of one request together across the
API layer, the provider clients and the quote workflow.

HOW: Uses a ContextVar, which is async-safe: concurrent requests never see
each other's context. The id is echoed in the X-Request-ID response header.
A caller-supplied X-Request-ID is reused when it looks like an id.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


REQUEST_ID_HEADER = "X-Request-ID"
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped data.

    Deliberately holds no credentials: tokens stay in ProviderCredential,
    which is passed explicitly.
    """

    request_id: str
    path: str
    method: str


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_request_id() -> Optional[str]:
    context = _request_context.get()
    return context.request_id if context else None


def resolve_request_id(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER)
    if incoming and _SAFE_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    Stored in request.state (for handlers) and in a ContextVar (for code
    without the request object).
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = RequestContext(
            request_id=resolve_request_id(request),
            path=request.url.path,
            method=request.method,
        )
        request.state.context = context
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = context.request_id
            logger.debug(
                f"{context.method} {context.path} -> {response.status_code} "
                f"[{context.request_id}]"
            )
            return response
        finally:
            _request_context.reset(token)

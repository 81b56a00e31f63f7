"""
FastAPI exception handlers.

WHY: The widget branches on one error shape for everything the proxy
rejects, from a bad API key to a failed quote run:

    {"error": <kind>, "message": ..., "status_code": ..., "details": ...,
     "request_id": ...}

The request id matches the X-Request-ID header and the server log lines,
so a support report can be traced without the proxy storing anything.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mailbridge.core.exceptions import AppException
from mailbridge.middleware.request_context import get_request_id

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "status_code": status_code,
            "details": details,
            "request_id": request_id or get_request_id(),
        },
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Render an AppException (and subclasses) with its own status code.

    Upstream and orchestration failures (5xx) are logged; client errors are
    not, since they carry nothing the caller did not send.
    """
    if exc.status_code >= 500:
        logger.warning(
            f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}"
        )
    body = exc.to_dict()
    return error_response(exc.status_code, body["error"], body["message"], body["details"])


def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    # "body" / "query" prefixes are dropped: the widget only knows field names
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error["loc"]]
        if location and location[0] in ("body", "query", "header", "path"):
            location = location[1:]
        errors.append(
            {
                "field": ".".join(location),
                "message": error["msg"],
                "type": error["type"],
            }
        )
    return errors


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Render schema validation failures as a ValidationError.

    `details.field` names the first offending field, as a ValidationError
    raised in code would; `details.errors` lists all of them.
    """
    errors = _field_errors(exc)
    details: Dict[str, Any] = {"errors": errors}
    if errors:
        details["field"] = errors[0]["field"]
        details["reason"] = errors[0]["message"]
    return error_response(400, "ValidationError", "Request validation failed", details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes and wrong methods, raised by Starlette before any router."""
    return error_response(exc.status_code, "HTTPException", str(exc.detail))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last resort for anything that is not an AppException.

    The traceback goes to the log only; the caller gets a generic message.
    This runs outside the request-id middleware, so the id comes from the
    request state that middleware left behind.
    """
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}",
        exc_info=exc,
    )
    context = getattr(request.state, "context", None)
    return error_response(
        500,
        "InternalServerError",
        "An unexpected error occurred",
        request_id=context.request_id if context else None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

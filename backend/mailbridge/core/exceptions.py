"""
Exception hierarchy for the proxy.

WHY: Every failure the widget can see maps to one class here, and each class
carries its HTTP status. Upstream failures also say whether the backend
accepted anything, which is what decides if the widget may retry a send.

Route handlers, providers and the orchestrator raise these; the handlers in
exception_handlers.py turn them into JSON.
"""

from typing import Any, Dict, Optional

# Context keys that never reach a response body
SENSITIVE_CONTEXT_KEYS = frozenset(
    {"password", "token", "secret", "key", "api_key", "bearer_token", "authorization"}
)


class AppException(Exception):
    """
    Root of the proxy's exceptions.

    Keyword arguments beyond message/status_code become `details` in the
    response, minus anything that looks like a credential.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def public_context(self) -> Dict[str, Any]:
        return {k: v for k, v in self.context.items() if k.lower() not in SENSITIVE_CONTEXT_KEYS}

    def to_dict(self) -> Dict[str, Any]:
        details = self.public_context()
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": details or None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when the proxy key or the account token is missing or wrong.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when a valid key lacks the capability for an action.

    WHY: Distinguishing 403 from 401 lets the widget show "read-only access"
    instead of "please reconnect".

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class UpstreamTokenError(AuthenticationError):
    """
    Raised when a mail backend rejects the forwarded bearer token.

    WHY: An expired or revoked OAuth token cannot be fixed by retrying, so
    this is an authentication failure rather than an upstream outage.

    HTTP Status: 401 Unauthorized
    """

    default_message = "Invalid or expired account token"


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    Carries `field` and `reason` in its context so callers can point at the
    offending input.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        field: Optional[str] = None,
        reason: Optional[str] = None,
        **context: Any,
    ):
        if field is not None:
            context["field"] = field
        if reason is not None:
            context["reason"] = reason
        super().__init__(message=message or reason, **context)
        self.field = field
        self.reason = reason


class CapabilityMismatchError(AppException):
    """
    Raised when a backend variant does not offer the requested operation.

    WHY: A send-only backend has no mailbox to list. That is neither an
    authentication problem nor a malformed request, so it gets its own kind.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Operation not supported by this provider"


class MimeError(ValidationError):
    """
    Raised when a message cannot be composed or decoded.

    Covers malformed addresses, undecodable attachments and raw messages
    that are not valid MIME. Always local to this process and never retried.

    HTTP Status: 400 Bad Request
    """

    default_message = "Invalid message content"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


# ============================================================================
# Upstream Exceptions
# ============================================================================


class UpstreamError(AppException):
    """
    Base exception for failures reported by an external service.

    Context always names the `backend` and, when a response arrived, the
    `upstream_status` it returned.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"

    def __init__(
        self,
        message: Optional[str] = None,
        backend: Optional[str] = None,
        upstream_status: Optional[int] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        if backend is not None:
            context["backend"] = backend
        if upstream_status is not None:
            context["upstream_status"] = upstream_status
        super().__init__(message=message, status_code=status_code, **context)
        self.backend = backend
        self.upstream_status = upstream_status


class UpstreamRateLimitedError(UpstreamError):
    """
    Raised when a backend answers 429.

    WHY: Retrying immediately would only amplify the throttling, so the
    caller decides when to try again.

    HTTP Status: 429 Too Many Requests
    """

    status_code = 429
    default_message = "Upstream rate limit exceeded"


class UpstreamUnavailableError(UpstreamError):
    """
    Raised when a backend keeps failing with 5xx or cannot be reached.

    HTTP Status: 503 Service Unavailable
    """

    status_code = 503
    default_message = "Upstream service unavailable"


class UpstreamTimeoutError(UpstreamError):
    """
    Raised when a backend call exceeds the configured timeout.

    HTTP Status: 504 Gateway Timeout
    """

    status_code = 504
    default_message = "Upstream request timed out"


class UpstreamNotFoundError(UpstreamError):
    """
    Raised when a backend reports that the addressed object doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Upstream resource not found"


class WorkflowEngineError(UpstreamError):
    """
    Raised when a workflow engine call fails.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Workflow engine error"


class PdfSourceError(UpstreamError):
    """
    Raised when the quote PDF cannot be downloaded.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Failed to download PDF"


# ============================================================================
# Orchestration Exceptions
# ============================================================================


class OrchestrationError(AppException):
    """
    Raised when a quote run stops before the email went out.

    WHY: The failed step tells the caller whether a duplicate send is
    possible. Every step up to and including SEND fails before the backend
    accepted the message, so a retry cannot send the quote twice. The one
    exception is a SEND whose request may have reached the backend before
    the connection failed (delivery_unknown): then email_sent is None and
    retry_safe is False.

    HTTP Status: taken from the underlying cause
    """

    default_message = "Quote orchestration failed"

    def __init__(self, step: str, cause: AppException):
        delivery_unknown = bool(cause.context.get("delivery_unknown"))
        super().__init__(
            message=f"Quote run failed at {step}: {cause.message}",
            status_code=cause.status_code,
            step=step,
            email_sent=None if delivery_unknown else False,
            retry_safe=not delivery_unknown,
            cause=cause.to_dict(),
        )
        self.step = step
        self.cause = cause

"""
HTTP access to mail backends.

WHAT: One small wrapper around httpx.AsyncClient that every provider uses
for its calls, and that owns the retry and error-mapping policy.

WHY: The rules about what may be retried are the core safety property of
the proxy:
- reads and label changes: one retry, after a fixed delay, on 5xx or a
  connection failure
- sends: exactly one attempt, ever
- 401 and 429: never retried, surfaced as their own error kinds
- timeouts: never retried, surfaced as a timeout

Keeping that in one place means a provider cannot accidentally retry a send.

HOW: Each call opens a short-lived AsyncClient (optionally on an injected
transport, which tests use to stand in for the backend). tenacity drives the
single retry.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from mailbridge.core.exceptions import (
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamRateLimitedError,
    UpstreamTimeoutError,
    UpstreamTokenError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


# One original attempt plus exactly one retry
MAX_ATTEMPTS = 2


def parse_error_response(response: httpx.Response) -> str:
    """
    Extract a readable message from a backend error body.

    Gmail and Graph use {"error": {"message": ...}}; Postmark uses
    {"Message": ...}.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        for key in ("Message", "message", "error_description"):
            if data.get(key):
                return str(data[key])
    return f"HTTP {response.status_code}"


def json_body(response: httpx.Response) -> Dict[str, Any]:
    """
    Decode a success body that may legitimately be empty or not JSON.

    Used after a write was accepted: the mail is already out, so a body we
    cannot read must not turn into an error.
    """
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class UpstreamHttp:
    """
    Policy-enforcing HTTP access to one backend.

    The bearer token is held only for the lifetime of the provider that owns
    this object (one request) and is never logged.
    """

    def __init__(
        self,
        backend: str,
        headers: Dict[str, str],
        timeout: float,
        retry_delay: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.backend = backend
        self._headers = headers
        self._timeout = timeout
        self._retry_delay = retry_delay
        self._transport = transport

    # =========================================================================
    # Public calls
    # =========================================================================

    async def read(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Idempotent call; retried once on a transient failure."""
        return await self._with_retry(method, url, **kwargs)

    async def modify(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Label change; retried once on a transient failure like a read."""
        return await self._with_retry(method, url, **kwargs)

    async def write_once(
        self, method: str, url: str, delivers: bool = True, **kwargs: Any
    ) -> httpx.Response:
        """
        Non-idempotent call. Issued exactly once.

        For calls that deliver mail (`delivers`), a failure after the request
        may have reached the backend (read timeout, dropped connection)
        carries delivery_unknown=True so callers never claim "not sent"
        falsely. Preparatory writes such as draft creation pass
        delivers=False.
        """
        return await self._send(method, url, ambiguous_failures=delivers, **kwargs)

    async def get_json(self, url: str, params: Any = None) -> Dict[str, Any]:
        response = await self.read("GET", url, params=params)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise UpstreamError(
                message=f"{self.backend} returned a non-JSON response",
                backend=self.backend,
                upstream_status=response.status_code,
            )

    # =========================================================================
    # Internals
    # =========================================================================

    async def _with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_exception_type(UpstreamUnavailableError),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                response = await self._send(method, url, **kwargs)
        return response

    def _log_retry(self, retry_state: Any) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{self.backend} call failed (attempt {retry_state.attempt_number}/{MAX_ATTEMPTS}), "
            f"retrying in {self._retry_delay}s: {exc}"
        )

    async def _send(
        self,
        method: str,
        url: str,
        ambiguous_failures: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as e:
            # A connect timeout means nothing was sent
            sent_maybe = ambiguous_failures and not isinstance(e, httpx.ConnectTimeout)
            raise UpstreamTimeoutError(
                message=f"{self.backend} did not answer within {self._timeout}s",
                backend=self.backend,
                delivery_unknown=sent_maybe,
            )
        except httpx.ConnectError as e:
            raise UpstreamUnavailableError(
                message=f"Could not connect to {self.backend}: {e}",
                backend=self.backend,
            )
        except httpx.RequestError as e:
            if ambiguous_failures:
                # The request may have been delivered; not retryable
                raise UpstreamError(
                    message=f"Connection to {self.backend} failed mid-request: {e}",
                    backend=self.backend,
                    delivery_unknown=True,
                )
            raise UpstreamUnavailableError(
                message=f"Connection to {self.backend} failed: {e}",
                backend=self.backend,
            )

        if response.status_code >= 400:
            self._raise_for_status(method, response)
        return response

    def _raise_for_status(self, method: str, response: httpx.Response) -> None:
        status = response.status_code
        detail = parse_error_response(response)
        path = response.request.url.path

        logger.warning(f"{self.backend} {method} {path} returned {status}: {detail}")

        if status == 401:
            raise UpstreamTokenError(
                message=f"{self.backend} rejected the account token: {detail}",
                backend=self.backend,
                upstream_status=status,
            )
        if status == 429:
            raise UpstreamRateLimitedError(
                message=f"{self.backend} rate limit exceeded",
                backend=self.backend,
                upstream_status=status,
                retry_after=response.headers.get("Retry-After"),
            )
        if status == 404:
            raise UpstreamNotFoundError(
                message=f"{self.backend}: {detail}",
                backend=self.backend,
                upstream_status=status,
            )
        if status >= 500:
            raise UpstreamUnavailableError(
                message=f"{self.backend} is unavailable: {detail}",
                backend=self.backend,
                upstream_status=status,
            )
        raise UpstreamError(
            message=f"{self.backend} error: {detail}",
            backend=self.backend,
            upstream_status=status,
        )

"""
Workflow engine API client.

WHAT: HTTP client for the no-code workflow engine that owns quotes.

WHY: Two calls leave the proxy during a quote run:
1. preview - render the quote's email template (HTML + default body text)
2. notify - record that the quote email went out, so the engine can
   schedule its reminders

HOW: Uses httpx with the configured timeout and the engine's bearer token.
Workflows live under {base}/{version}/api/1.1/{path}, where version is the
deployment tag (e.g. "version-test" or "live"). Neither call is retried:
notify must happen at most once per send, and preview sits in front of it.
All failures are wrapped in WorkflowEngineError, except timeouts, which
surface as UpstreamTimeoutError.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from mailbridge.core.config import Settings
from mailbridge.core.exceptions import UpstreamTimeoutError, ValidationError, WorkflowEngineError
from mailbridge.mail.providers.http import parse_error_response

logger = logging.getLogger(__name__)


BACKEND_NAME = "workflow_engine"
API_PREFIX = "api/1.1"

# Version tags become a URL path segment
VERSION_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass
class QuotePreview:
    """Rendered quote template returned by the preview workflow."""

    html: str
    body: Optional[str] = None
    pdf_url: Optional[str] = None
    pdf_name: Optional[str] = None


class WorkflowClient:
    """
    Async HTTP client for the workflow engine.

    One instance per request; holds no state besides configuration.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Loaded settings (base URL, token, workflow paths)
            transport: Optional httpx transport, used by tests
        """
        self._base_url = settings.WORKFLOW_ENGINE_BASE_URL.rstrip("/")
        self._api_token = settings.WORKFLOW_ENGINE_API_TOKEN
        self._default_version = settings.WORKFLOW_DEFAULT_VERSION
        self._preview_path = settings.WORKFLOW_PREVIEW_PATH.strip("/")
        self._notify_path = settings.WORKFLOW_NOTIFY_PATH.strip("/")
        self._timeout = settings.UPSTREAM_TIMEOUT_SECONDS
        self._transport = transport

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    def workflow_url(self, path: str, version: Optional[str] = None) -> str:
        """
        Build the URL of one workflow.

        Raises:
            ValidationError: If the version tag is not a plain path segment
        """
        version_tag = version or self._default_version
        if not VERSION_PATTERN.match(version_tag):
            raise ValidationError(
                message="Invalid workflow version",
                field="version",
                reason=f"not a valid version tag: {version_tag!r}",
            )
        return f"{self._base_url}/{version_tag}/{API_PREFIX}/{path}"

    async def _request(self, url: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST to a workflow and return its JSON response.

        Bubble-style engines wrap results as {"status": ..., "response": {...}};
        the inner object is returned when present.

        Raises:
            WorkflowEngineError: Connection failure or error status
            UpstreamTimeoutError: No answer within the configured timeout
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=False,
            ) as client:
                response = await client.post(url, headers=self._get_headers(), json=data)

                if response.status_code >= 400:
                    error_detail = parse_error_response(response)
                    raise WorkflowEngineError(
                        message=f"Workflow engine error: {error_detail}",
                        backend=BACKEND_NAME,
                        upstream_status=response.status_code,
                    )

                if response.status_code == 204 or not response.content:
                    return {}

                try:
                    body = response.json()
                except ValueError:
                    raise WorkflowEngineError(
                        message="Workflow engine returned a non-JSON response",
                        backend=BACKEND_NAME,
                        upstream_status=response.status_code,
                    )

        except httpx.TimeoutException:
            raise UpstreamTimeoutError(
                message="Workflow engine request timed out",
                backend=BACKEND_NAME,
                timeout=self._timeout,
            )
        except httpx.RequestError as e:
            raise WorkflowEngineError(
                message=f"Workflow engine connection error: {str(e)}",
                backend=BACKEND_NAME,
            )

        if isinstance(body, dict) and isinstance(body.get("response"), dict):
            return body["response"]
        return body if isinstance(body, dict) else {}

    # =========================================================================
    # Workflows
    # =========================================================================

    async def preview(
        self,
        quote_id: str,
        version: Optional[str] = None,
        export_settings: Optional[List[str]] = None,
        comment: str = "",
    ) -> QuotePreview:
        """
        Render the quote email template.

        The comment is always sent empty from the quote flow: the preview is
        a template, and the caller's comment is merged in afterwards.

        Args:
            quote_id: Quote identifier in the workflow engine
            version: Deployment tag; defaults to WORKFLOW_DEFAULT_VERSION
            export_settings: PDF export options forwarded verbatim
            comment: Comment text for the template

        Returns:
            QuotePreview with the raw HTML and optional default body

        Raises:
            WorkflowEngineError: If the engine fails or returns no HTML
        """
        url = self.workflow_url(self._preview_path, version)
        data = await self._request(
            url,
            {
                "quote_id": quote_id,
                "comment": comment,
                "pdf_export_settings": export_settings or [],
            },
        )

        html = data.get("html")
        if not isinstance(html, str) or not html:
            raise WorkflowEngineError(
                message="Workflow engine returned no quote HTML",
                backend=BACKEND_NAME,
                quote_id=quote_id,
            )

        return QuotePreview(
            html=html,
            body=data.get("body") or None,
            pdf_url=data.get("pdf_url") or data.get("pdf") or None,
            pdf_name=data.get("pdf_name") or None,
        )

    async def notify(
        self,
        quote_id: str,
        correlation_id: str,
        version: Optional[str] = None,
        provider: Optional[str] = None,
        message_id: Optional[str] = None,
        identificator: Optional[str] = None,
    ) -> None:
        """
        Record a sent quote email.

        Raises:
            WorkflowEngineError: If the engine does not acknowledge the call
        """
        url = self.workflow_url(self._notify_path, version)
        payload: Dict[str, Any] = {
            "quote_id": quote_id,
            "correlation_id": correlation_id,
        }
        if provider:
            payload["provider"] = provider
        if message_id:
            payload["message_id"] = message_id
        if identificator:
            payload["identificator"] = identificator

        await self._request(url, payload)
        logger.info(f"Workflow engine notified for quote {quote_id} ({correlation_id})")

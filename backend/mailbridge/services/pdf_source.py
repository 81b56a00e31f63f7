"""
Quote PDF resolution.

WHAT: Turns whatever the caller handed us for the quote PDF (inline base64,
a data URI, or a URL) into attachment bytes.

WHY: The proxy never renders PDFs. It either receives the bytes or fetches
them from where the workflow engine stored them.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from mailbridge.core.exceptions import PdfSourceError, UpstreamTimeoutError, ValidationError
from mailbridge.mail.composer import decode_base64_content
from mailbridge.mail.models import OutgoingAttachment

logger = logging.getLogger(__name__)


BACKEND_NAME = "pdf_source"
DEFAULT_PDF_NAME = "quote.pdf"
PDF_MIME_TYPE = "application/pdf"


def is_url(content: str) -> bool:
    value = content.strip()
    return value.startswith(("http://", "https://", "//"))


def normalize_url(content: str) -> str:
    """
    Complete protocol-relative URLs ("//cdn.example.com/q.pdf") with https.

    Raises:
        ValidationError: If the result is not an http(s) URL with a host
    """
    url = content.strip()
    if url.startswith("//"):
        url = f"https:{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(
            message="Invalid PDF URL",
            field="pdf",
            reason=f"not an http(s) URL: {content!r}",
        )
    return url


def pdf_filename(name: Optional[str]) -> str:
    filename = (name or "").strip() or DEFAULT_PDF_NAME
    if not filename.lower().endswith(".pdf"):
        filename = f"{filename}.pdf"
    return filename


class PdfSource:
    """Resolves the quote PDF into an OutgoingAttachment."""

    def __init__(
        self,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._transport = transport

    async def resolve(
        self,
        content: Optional[str],
        filename: Optional[str] = None,
    ) -> Optional[OutgoingAttachment]:
        """
        Resolve inline content or a URL.

        Args:
            content: Base64 / data URI, or an http(s) / protocol-relative URL
            filename: Attachment name; ".pdf" is appended when missing

        Returns:
            OutgoingAttachment, or None when no content was given

        Raises:
            MimeError: Inline content is not valid base64
            PdfSourceError: The URL could not be downloaded
            UpstreamTimeoutError: The download timed out
        """
        if not content or not content.strip():
            return None

        if is_url(content):
            data = await self.download(normalize_url(content))
        else:
            data = decode_base64_content(content, field="pdf")

        return OutgoingAttachment(
            filename=pdf_filename(filename),
            content=data,
            mime_type=PDF_MIME_TYPE,
        )

    async def download(self, url: str) -> bytes:
        """Fetch the PDF bytes. One attempt."""
        host = urlparse(url).netloc
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            raise UpstreamTimeoutError(
                message="PDF download timed out",
                backend=BACKEND_NAME,
                host=host,
            )
        except httpx.RequestError as e:
            raise PdfSourceError(
                message=f"Failed to download PDF: {str(e)}",
                backend=BACKEND_NAME,
                host=host,
            )

        if response.status_code >= 400:
            raise PdfSourceError(
                message=f"Failed to download PDF (HTTP {response.status_code})",
                backend=BACKEND_NAME,
                upstream_status=response.status_code,
                host=host,
            )
        if not response.content:
            raise PdfSourceError(
                message="Downloaded PDF is empty",
                backend=BACKEND_NAME,
                upstream_status=response.status_code,
                host=host,
            )

        logger.debug(f"Downloaded PDF from {host} ({len(response.content)} bytes)")
        return response.content

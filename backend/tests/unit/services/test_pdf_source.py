"""
Unit tests for PdfSource.
"""

import base64

import httpx
import pytest

from mailbridge.core.exceptions import MimeError, PdfSourceError, ValidationError
from mailbridge.services.pdf_source import PdfSource, normalize_url, pdf_filename
from tests.factories import MockBackend


@pytest.fixture
def pdf_source(backend: MockBackend) -> PdfSource:
    return PdfSource(timeout=5, transport=backend.transport)


def serve_pdf(backend: MockBackend, path: str, content: bytes = b"%PDF-1.4") -> None:
    backend.add_handler("GET", path, lambda request: httpx.Response(200, content=content))


class TestHelpers:
    def test_protocol_relative_url(self):
        assert normalize_url("//cdn.example.com/q.pdf") == "https://cdn.example.com/q.pdf"

    def test_rejects_non_http(self):
        with pytest.raises(ValidationError):
            normalize_url("https://")

    @pytest.mark.parametrize(
        "name,expected",
        [(None, "quote.pdf"), ("  ", "quote.pdf"), ("Q-42", "Q-42.pdf"), ("q.PDF", "q.PDF")],
    )
    def test_filename(self, name, expected):
        assert pdf_filename(name) == expected


class TestResolve:
    @pytest.mark.asyncio
    async def test_nothing_to_attach(self, pdf_source):
        assert await pdf_source.resolve(None) is None
        assert await pdf_source.resolve("   ") is None

    @pytest.mark.asyncio
    async def test_inline_base64(self, pdf_source):
        encoded = base64.b64encode(b"%PDF-1.4").decode()

        attachment = await pdf_source.resolve(encoded, "quote")

        assert attachment.content == b"%PDF-1.4"
        assert attachment.filename == "quote.pdf"
        assert attachment.mime_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_data_uri(self, pdf_source):
        encoded = "data:application/pdf;base64," + base64.b64encode(b"%PDF").decode()
        attachment = await pdf_source.resolve(encoded)
        assert attachment.content == b"%PDF"

    @pytest.mark.asyncio
    async def test_invalid_base64(self, pdf_source):
        with pytest.raises(MimeError) as exc_info:
            await pdf_source.resolve("not base64!!")
        assert exc_info.value.field == "pdf"

    @pytest.mark.asyncio
    async def test_url_downloaded(self, pdf_source, backend):
        serve_pdf(backend, "/files/q.pdf", b"%PDF-from-url")

        attachment = await pdf_source.resolve("https://files.example.com/files/q.pdf")

        assert attachment.content == b"%PDF-from-url"
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_download_error_status(self, pdf_source, backend):
        with pytest.raises(PdfSourceError) as exc_info:
            await pdf_source.resolve("https://files.example.com/missing.pdf")

        assert exc_info.value.upstream_status == 404
        assert exc_info.value.context["host"] == "files.example.com"

    @pytest.mark.asyncio
    async def test_empty_download(self, pdf_source, backend):
        serve_pdf(backend, "/files/empty.pdf", b"")

        with pytest.raises(PdfSourceError):
            await pdf_source.resolve("https://files.example.com/files/empty.pdf")

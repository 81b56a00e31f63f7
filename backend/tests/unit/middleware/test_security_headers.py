"""
Tests for security headers middleware.

WHY: Responses carry mail content. These tests ensure every response is
locked down and that /api responses are never cached.
"""

import pytest
from httpx import AsyncClient


class TestSecurityHeadersMiddleware:
    """Test security headers middleware."""

    @pytest.mark.asyncio
    async def test_hsts_header_present(self, client: AsyncClient):
        response = await client.get("/health")

        hsts = response.headers["Strict-Transport-Security"]
        assert "max-age=31536000" in hsts
        assert "includeSubDomains" in hsts

    @pytest.mark.asyncio
    async def test_content_headers(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "no-referrer"

    @pytest.mark.asyncio
    async def test_csp_blocks_everything(self, client: AsyncClient):
        """
        WHY: The proxy only answers JSON, so no response may load resources
        or be framed.
        """
        response = await client.get("/health")

        csp = response.headers["Content-Security-Policy"]
        assert "default-src 'none'" in csp
        assert "frame-ancestors 'none'" in csp

    @pytest.mark.asyncio
    async def test_api_responses_not_cached(self, client: AsyncClient):
        response = await client.get("/api/messages", params={"provider": "gmail"})

        assert response.status_code == 401
        assert response.headers["Cache-Control"] == "no-store, private"
        assert response.headers["Pragma"] == "no-cache"

    @pytest.mark.asyncio
    async def test_health_cache_untouched(self, client: AsyncClient):
        response = await client.get("/health")
        assert "Pragma" not in response.headers

    @pytest.mark.asyncio
    async def test_headers_on_error_responses(self, client: AsyncClient):
        response = await client.get("/nonexistent-endpoint-12345")

        assert response.status_code == 404
        assert "X-Content-Type-Options" in response.headers
        assert "X-Request-ID" in response.headers

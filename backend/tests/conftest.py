"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup, so every test talks to the app
and to fake backends the same way.

HOW: Settings come from environment variables set before the app is
imported. Backend traffic never leaves the process: every outbound httpx
call is routed to a MockBackend through the get_http_transport dependency.
"""

import os
from typing import AsyncGenerator, Dict

# Settings are read once, when the app module is imported
os.environ.setdefault("APP_SECRET_KEY", "test-admin-key")
os.environ.setdefault("WIDGET_API_KEY", "test-widget-key")
os.environ.setdefault("ALLOWED_ORIGINS", "https://shop.example.com,https://admin.example.com")
os.environ.setdefault("WORKFLOW_ENGINE_BASE_URL", "https://engine.test")
os.environ.setdefault("WORKFLOW_ENGINE_API_TOKEN", "engine-token")
os.environ.setdefault("POSTMARK_SENDER_DOMAIN", "quotes.example.com")
os.environ.setdefault("RETRY_DELAY_SECONDS", "0")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from mailbridge.core.config import Settings
from mailbridge.core.deps import get_http_transport
from mailbridge.main import app
from tests.factories import ACCOUNT_TOKEN, ADMIN_KEY, WIDGET_KEY, MockBackend


@pytest.fixture
def backend() -> MockBackend:
    return MockBackend()


@pytest.fixture
def settings() -> Settings:
    """Settings for unit tests that build clients directly."""
    return Settings(
        APP_SECRET_KEY=ADMIN_KEY,
        WIDGET_API_KEY=WIDGET_KEY,
        ALLOWED_ORIGINS="https://shop.example.com",
        WORKFLOW_ENGINE_BASE_URL="https://engine.test",
        WORKFLOW_ENGINE_API_TOKEN="engine-token",
        POSTMARK_SENDER_DOMAIN="quotes.example.com",
        RETRY_DELAY_SECONDS=0,
        UPSTREAM_TIMEOUT_SECONDS=5,
    )


@pytest_asyncio.fixture
async def client(backend: MockBackend) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient with ASGITransport exercises the full app (middleware,
    dependencies, exception handlers) without running a server.

    Yields:
        AsyncClient: HTTP client for making test requests
    """
    app.dependency_overrides[get_http_transport] = lambda: backend.transport

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"x-api-key": ADMIN_KEY, "Authorization": f"Bearer {ACCOUNT_TOKEN}"}


@pytest.fixture
def widget_headers() -> Dict[str, str]:
    return {"x-api-key": WIDGET_KEY, "Authorization": f"Bearer {ACCOUNT_TOKEN}"}

"""
Integration tests for the reminder webhook.

WHAT: The workflow engine posts pre-rendered reminder emails; the run
starts at COMPOSE.

HOW: Uses pytest-asyncio with AsyncClient for HTTP testing.
"""

import pytest
from httpx import AsyncClient

from tests.factories import (
    ADMIN_KEY,
    ENGINE_NOTIFY,
    ENGINE_PREVIEW,
    GMAIL,
    GRAPH,
    QUOTE_TEMPLATE,
    EngineFactory,
    MockBackend,
)


def reminder(**overrides):
    body = {
        "content": QUOTE_TEMPLATE,
        "subject": "Reminder: your quote",
        "recipients": ["bob@example.com"],
        "platform": "gmail",
        "keys": "engine-held-token",
    }
    body.update(overrides)
    return body


class TestReminderWebhook:
    @pytest.mark.asyncio
    async def test_reminder_sent(self, client: AsyncClient, backend: MockBackend):
        backend.add("POST", f"{GMAIL}/messages/send", 200, {"id": "sent-1"})

        response = await client.post(
            "/api/webhook/reminder", json=reminder(), headers={"x-api-key": ADMIN_KEY}
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "sent"
        assert backend.calls("POST", ENGINE_PREVIEW) == []
        assert backend.calls("POST", ENGINE_NOTIFY) == []
        assert backend.requests[0].headers["Authorization"] == "Bearer engine-held-token"

    @pytest.mark.asyncio
    async def test_keys_take_precedence(self, client: AsyncClient, backend: MockBackend, admin_headers):
        backend.add("POST", f"{GMAIL}/messages/send", 200, {"id": "sent-1"})

        await client.post("/api/webhook/reminder", json=reminder(), headers=admin_headers)

        assert backend.requests[0].headers["Authorization"] == "Bearer engine-held-token"

    @pytest.mark.asyncio
    async def test_header_token_without_keys(
        self, client: AsyncClient, backend: MockBackend, admin_headers
    ):
        backend.add("POST", f"{GMAIL}/messages/send", 200, {"id": "sent-1"})

        await client.post("/api/webhook/reminder", json=reminder(keys=None), headers=admin_headers)

        assert backend.requests[0].headers["Authorization"] == "Bearer account-token"

    @pytest.mark.asyncio
    async def test_notify_uses_identificator(self, client: AsyncClient, backend: MockBackend):
        backend.add("POST", f"{GRAPH}/messages", 201, {"id": "draft-1"})
        backend.add("POST", f"{GRAPH}/messages/draft-1/send", 202)
        backend.add("POST", ENGINE_NOTIFY, 200, EngineFactory.notified())

        response = await client.post(
            "/api/webhook/reminder",
            json=reminder(platform="outlook", identificator="md-9", notify=True),
            headers={"x-api-key": ADMIN_KEY},
        )

        assert response.status_code == 200
        notify = MockBackend.json_of(backend.calls("POST", ENGINE_NOTIFY)[0])
        assert notify["quote_id"] == "md-9"
        assert notify["identificator"] == "md-9"
        assert notify["provider"] == "outlook"

    @pytest.mark.asyncio
    async def test_notify_needs_an_id(self, client: AsyncClient, backend: MockBackend):
        response = await client.post(
            "/api/webhook/reminder",
            json=reminder(notify=True),
            headers={"x-api-key": ADMIN_KEY},
        )

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "quote_id"
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_send_failure(self, client: AsyncClient, backend: MockBackend):
        backend.add("POST", f"{GMAIL}/messages/send", 401, {"error": {"message": "Invalid Credentials"}})

        response = await client.post(
            "/api/webhook/reminder", json=reminder(), headers={"x-api-key": ADMIN_KEY}
        )

        assert response.status_code == 401
        details = response.json()["details"]
        assert details["step"] == "SEND"
        assert details["retry_safe"] is True
        assert "engine-held-token" not in response.text

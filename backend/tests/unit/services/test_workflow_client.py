"""
Unit tests for WorkflowClient.

WHAT: Tests URL building, the response envelope and error mapping of the
workflow engine client.
"""

import httpx
import pytest

from mailbridge.core.exceptions import UpstreamTimeoutError, ValidationError, WorkflowEngineError
from mailbridge.services.workflow_client import WorkflowClient
from tests.factories import ENGINE, ENGINE_NOTIFY, ENGINE_PREVIEW, EngineFactory, MockBackend


@pytest.fixture
def workflow(settings, backend: MockBackend) -> WorkflowClient:
    return WorkflowClient(settings, backend.transport)


class TestWorkflowUrl:
    def test_default_version(self, workflow):
        assert workflow.workflow_url("wf/quote_preview") == f"https://engine.test{ENGINE_PREVIEW}"

    def test_live_version(self, workflow):
        url = workflow.workflow_url("wf/quote_preview", "live")
        assert url == "https://engine.test/live/api/1.1/wf/quote_preview"

    @pytest.mark.parametrize("version", ["../admin", "live/../x", "a b"])
    def test_version_must_be_a_path_segment(self, workflow, version):
        with pytest.raises(ValidationError) as exc_info:
            workflow.workflow_url("wf/quote_preview", version)
        assert exc_info.value.field == "version"


class TestPreview:
    @pytest.mark.asyncio
    async def test_unwraps_response(self, workflow, backend):
        backend.add(
            "POST",
            ENGINE_PREVIEW,
            200,
            EngineFactory.preview(html="<p>Q</p>", body="Hello", pdf_url="https://files.example.com/q.pdf"),
        )

        preview = await workflow.preview("Q-1", export_settings=["logo"])

        assert preview.html == "<p>Q</p>"
        assert preview.body == "Hello"
        assert preview.pdf_url == "https://files.example.com/q.pdf"
        request = backend.requests[0]
        assert request.headers["Authorization"] == "Bearer engine-token"
        assert MockBackend.json_of(request)["pdf_export_settings"] == ["logo"]

    @pytest.mark.asyncio
    async def test_missing_html(self, workflow, backend):
        backend.add("POST", ENGINE_PREVIEW, 200, {"status": "success", "response": {"body": "x"}})

        with pytest.raises(WorkflowEngineError) as exc_info:
            await workflow.preview("Q-1")
        assert exc_info.value.context["quote_id"] == "Q-1"

    @pytest.mark.asyncio
    async def test_error_status(self, workflow, backend):
        backend.add("POST", ENGINE_PREVIEW, 404, {"message": "Workflow not found"})

        with pytest.raises(WorkflowEngineError) as exc_info:
            await workflow.preview("Q-1")

        assert exc_info.value.upstream_status == 404
        assert exc_info.value.status_code == 502
        assert "Workflow not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_not_retried(self, workflow, backend):
        backend.add("POST", ENGINE_PREVIEW, 503, {"message": "busy"})

        with pytest.raises(WorkflowEngineError):
            await workflow.preview("Q-1")
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout(self, workflow, backend):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        backend.add_handler("POST", ENGINE_PREVIEW, slow)

        with pytest.raises(UpstreamTimeoutError):
            await workflow.preview("Q-1")


class TestNotify:
    @pytest.mark.asyncio
    async def test_payload(self, workflow, backend):
        backend.add("POST", ENGINE_NOTIFY, 200, EngineFactory.notified())

        await workflow.notify("Q-1", "DIAB12", provider="gmail", message_id="sent-1")

        assert MockBackend.json_of(backend.requests[0]) == {
            "quote_id": "Q-1",
            "correlation_id": "DIAB12",
            "provider": "gmail",
            "message_id": "sent-1",
        }

    @pytest.mark.asyncio
    async def test_empty_response_accepted(self, workflow, backend):
        backend.add("POST", f"{ENGINE}/wf/send_remember", 204)
        await workflow.notify("Q-1", "DIAB12")

    @pytest.mark.asyncio
    async def test_connection_error(self, workflow, backend):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        backend.add_handler("POST", ENGINE_NOTIFY, refuse)

        with pytest.raises(WorkflowEngineError):
            await workflow.notify("Q-1", "DIAB12")

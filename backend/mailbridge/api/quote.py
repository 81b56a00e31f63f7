"""
Quote API Routes.

WHAT: Endpoints for quote emails:
1. preview - render the template without sending (any valid key)
2. send - full PREVIEW -> COMPOSE -> DELIVER -> SEND -> NOTIFY run (Admin)

WHY: A failed run must tell the UI whether retrying could send the quote
twice. Failures are returned as OrchestrationError bodies naming the failed
step; a run whose email went out always answers 200, with a warning when
the workflow engine could not be notified.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings, get_settings
from mailbridge.core.deps import (
    build_orchestrator,
    build_provider,
    get_credential,
    get_http_transport,
    get_pdf_source,
    get_workflow_client,
    require_admin_credential,
)
from mailbridge.core.exceptions import OrchestrationError
from mailbridge.schemas.quote import (
    QuotePreviewRequest,
    QuotePreviewResponse,
    QuoteSendRequestBody,
    QuoteSendResponse,
)
from mailbridge.services.pdf_source import PdfSource
from mailbridge.services.quote_orchestrator import (
    OrchestrationOutcome,
    OrchestrationResult,
    QuoteSendRequest,
    render_preview,
)
from mailbridge.services.workflow_client import WorkflowClient

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/quote", tags=["quote"])


def quote_result_to_response(result: OrchestrationResult) -> QuoteSendResponse:
    """
    Convert a finished run into the response schema.

    Raises:
        OrchestrationError: If the run ended as FAILED
    """
    if result.outcome == OrchestrationOutcome.FAILED:
        raise OrchestrationError(step=result.failed_step.value, cause=result.error)

    return QuoteSendResponse(
        outcome=result.outcome,
        correlation_id=result.correlation_id,
        message_id=result.message_id,
        warning=result.warning,
        failed_step=result.failed_step,
    )


@router.post("/preview", response_model=QuotePreviewResponse)
async def preview_quote(
    request: QuotePreviewRequest,
    credential: ProviderCredential = Depends(get_credential),
    settings: Settings = Depends(get_settings),
    workflow: WorkflowClient = Depends(get_workflow_client),
):
    """
    Render a quote email without sending it.

    WHAT: Returns the template HTML with the comment placeholder removed,
    and the engine's default body text for the comment box.
    """
    preview = await render_preview(
        workflow,
        settings.QUOTE_COMMENT_PLACEHOLDER,
        request.quote_id,
        request.version,
        request.pdf_export_settings,
    )
    return QuotePreviewResponse(
        html=preview.html,
        body=preview.body,
        has_comment_slot=preview.has_comment_slot,
    )


@router.post("/send", response_model=QuoteSendResponse)
async def send_quote(
    request: QuoteSendRequestBody,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
    workflow: WorkflowClient = Depends(get_workflow_client),
    pdf_source: PdfSource = Depends(get_pdf_source),
):
    """
    Send a quote email.

    WHAT: Runs the quote workflow once. The email is sent at most once per
    request; nothing is retried after SEND.
    """
    client = build_provider(request.provider, credential, settings, transport, request.company)
    orchestrator = build_orchestrator(client, workflow, pdf_source, settings)

    result = await orchestrator.run(
        QuoteSendRequest(
            quote_id=request.quote_id,
            to=request.to,
            subject=request.subject,
            cc=request.cc,
            version=request.version,
            comment=request.comment,
            export_settings=request.pdf_export_settings,
            pdf=request.pdf,
            pdf_name=request.pdf_name,
            thread_id=request.thread_id,
            identificator=request.identificator,
            notify=request.notify,
        )
    )
    return quote_result_to_response(result)

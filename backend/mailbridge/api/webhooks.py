"""
Webhook API Routes.

WHAT: Entry points called by the workflow engine rather than by a user.

WHY: Reminder emails are rendered by the engine itself, so the quote run
re-enters at COMPOSE with the finished HTML. The engine authenticates with
the Admin key and passes the mailbox token in the payload.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends

from mailbridge.api.quote import quote_result_to_response
from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings, get_settings
from mailbridge.core.deps import (
    build_orchestrator,
    build_provider,
    get_http_transport,
    get_pdf_source,
    get_workflow_client,
    require_admin_credential,
)
from mailbridge.core.exceptions import ValidationError
from mailbridge.schemas.quote import QuoteSendResponse, ReminderWebhookRequest
from mailbridge.services.pdf_source import PdfSource
from mailbridge.services.quote_orchestrator import QuoteSendRequest
from mailbridge.services.workflow_client import WorkflowClient

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/webhook", tags=["webhooks"])


@router.post("/reminder", response_model=QuoteSendResponse)
async def reminder_webhook(
    request: ReminderWebhookRequest,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
    workflow: WorkflowClient = Depends(get_workflow_client),
    pdf_source: PdfSource = Depends(get_pdf_source),
):
    """
    Send a reminder for a quote.

    WHAT: Starts the quote run at COMPOSE with the engine's HTML. The
    token in `keys` takes precedence over the Authorization header.
    """
    quote_id = request.quote_id or request.identificator or ""
    if request.notify and not quote_id:
        raise ValidationError(
            message="quote_id or identificator is required to notify the workflow engine",
            field="quote_id",
            reason="missing",
        )

    account = ProviderCredential(
        capability=credential.capability,
        bearer_token=(request.keys or "").strip() or credential.bearer_token,
    )
    client = build_provider(request.platform, account, settings, transport, request.company)
    orchestrator = build_orchestrator(client, workflow, pdf_source, settings)

    logger.info(f"Reminder webhook for {quote_id or 'unidentified quote'} via {request.platform.value}")

    result = await orchestrator.run(
        QuoteSendRequest(
            quote_id=quote_id,
            to=request.recipients,
            subject=request.subject,
            cc=request.cc,
            version=request.version,
            comment=request.comment,
            pdf=request.file,
            pdf_name=request.file_name,
            thread_id=request.thread_id,
            identificator=request.identificator,
            html=request.content,
            notify=request.notify,
        )
    )
    return quote_result_to_response(result)

"""
Quote Pydantic Schemas.

WHAT: Request/Response models for the quote endpoints and the workflow
engine's reminder webhook.

WHY: Widgets built against earlier versions of the API send a few fields
under older names (pdf_base64, maildata_identificator, trigger_reminder);
both spellings are accepted.
"""

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from mailbridge.mail.models import Provider
from mailbridge.services.quote_orchestrator import OrchestrationOutcome, OrchestrationStep


# ============================================================================
# Request Schemas
# ============================================================================


class QuotePreviewRequest(BaseModel):
    """Request schema for rendering a quote email without sending it."""

    quote_id: str = Field(..., min_length=1, max_length=255, description="Quote ID")
    version: Optional[str] = Field(None, description="Workflow engine version tag")
    pdf_export_settings: List[str] = Field(default=[], description="PDF export options")


class QuoteSendRequestBody(BaseModel):
    """
    Request schema for a full quote run.

    WHAT: Everything PREVIEW through NOTIFY needs. `comment` omitted means
    the engine's default body is used; an empty string means no comment.
    """

    model_config = ConfigDict(populate_by_name=True)

    provider: Provider = Field(..., description="Mail backend")
    quote_id: str = Field(..., min_length=1, max_length=255, description="Quote ID")
    version: Optional[str] = Field(None, description="Workflow engine version tag")
    to: List[str] = Field(..., min_length=1, description="Recipient addresses")
    cc: List[str] = Field(default=[], description="Cc addresses")
    subject: str = Field(..., max_length=998, description="Subject line")
    comment: Optional[str] = Field(None, max_length=10000, description="Comment for the template")
    thread_id: Optional[str] = Field(None, description="Thread to reply in (Gmail)")
    pdf_export_settings: List[str] = Field(default=[], description="PDF export options")
    pdf: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("pdf", "pdf_base64"),
        description="PDF as base64, data URI or URL",
    )
    pdf_name: Optional[str] = Field(None, max_length=255, description="PDF file name")
    identificator: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("identificator", "maildata_identificator"),
        description="Mail data record in the workflow engine",
    )
    company: Optional[str] = Field(None, max_length=255, description="Company name (Postmark sender)")
    notify: bool = Field(
        default=True,
        validation_alias=AliasChoices("notify", "trigger_reminder"),
        description="Record the send in the workflow engine",
    )


class ReminderWebhookRequest(BaseModel):
    """
    Payload of the workflow engine's reminder webhook.

    WHAT: A pre-rendered quote email. The run starts at COMPOSE; the
    account token travels in `keys` because the engine cannot set headers
    per mailbox.
    """

    content: str = Field(..., min_length=1, description="Rendered HTML")
    subject: str = Field(..., max_length=998, description="Subject line")
    recipients: List[str] = Field(..., min_length=1, description="Recipient addresses")
    cc: List[str] = Field(default=[], description="Cc addresses")
    platform: Provider = Field(..., description="Mail backend")
    keys: Optional[str] = Field(None, description="Account bearer token")
    identificator: Optional[str] = Field(None, description="Mail data record in the workflow engine")
    quote_id: Optional[str] = Field(None, description="Quote ID (defaults to identificator)")
    version: Optional[str] = Field(None, description="Workflow engine version tag")
    comment: Optional[str] = Field(None, max_length=10000, description="Comment for the template")
    file: Optional[str] = Field(None, description="PDF as base64, data URI or URL")
    file_name: Optional[str] = Field(None, max_length=255, description="PDF file name")
    company: Optional[str] = Field(None, max_length=255, description="Company name (Postmark sender)")
    thread_id: Optional[str] = Field(None, description="Thread to reply in (Gmail)")
    notify: bool = Field(default=False, description="Record the send in the workflow engine")


# ============================================================================
# Response Schemas
# ============================================================================


class QuotePreviewResponse(BaseModel):
    """Template HTML (placeholder removed) and the engine's default body."""

    html: str
    body: Optional[str] = None
    has_comment_slot: bool


class QuoteSendResponse(BaseModel):
    """
    Result of a quote run that sent the email.

    WHAT: `outcome` is "sent" or "sent_notify_failed"; in the second case
    `warning` says why the engine was not notified. Failed runs are
    returned as OrchestrationError bodies instead.
    """

    success: bool = True
    outcome: OrchestrationOutcome
    email_sent: bool = True
    correlation_id: str
    message_id: Optional[str] = None
    warning: Optional[str] = None
    failed_step: Optional[OrchestrationStep] = None

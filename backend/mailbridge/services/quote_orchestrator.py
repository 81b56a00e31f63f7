"""
Quote send workflow.

WHAT: Drives one quote email from template to inbox:

    PREVIEW -> COMPOSE -> DELIVER -> SEND -> NOTIFY

WHY: Each step depends on the previous one, and the step a run stops at
decides what the caller may safely do next:
- stopping at or before SEND means no email went out, so retrying cannot
  send the quote twice
- stopping at NOTIFY means the email DID go out; the run still counts as a
  send (SentNotifyFailed) and carries a warning instead of an error

HOW:
- Steps run strictly in order; there is no branching back and no retry of
  SEND or NOTIFY
- A direct request starts at PREVIEW (the workflow engine renders the
  template). A webhook re-entry already carries the HTML and starts at
  COMPOSE
- Every transition is logged with the run's correlation id
"""

import html as html_lib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from mailbridge.core.exceptions import AppException
from mailbridge.mail.composer import MimeComposer, generate_correlation_id
from mailbridge.mail.models import ComposedMessage
from mailbridge.mail.providers.base import ProviderClient
from mailbridge.services.pdf_source import PdfSource
from mailbridge.services.workflow_client import QuotePreview, WorkflowClient

logger = logging.getLogger(__name__)


class OrchestrationStep(str, Enum):
    """Stages of a quote run, in execution order."""

    PREVIEW = "PREVIEW"
    COMPOSE = "COMPOSE"
    DELIVER = "DELIVER"
    SEND = "SEND"
    NOTIFY = "NOTIFY"


class OrchestrationOutcome(str, Enum):
    """Terminal states of a quote run."""

    SENT = "sent"
    """Email sent; the workflow engine was notified (or notification was not requested)."""

    SENT_NOTIFY_FAILED = "sent_notify_failed"
    """Email sent; recording it in the workflow engine failed."""

    FAILED = "failed"
    """The run stopped before or at SEND."""


@dataclass
class QuoteSendRequest:
    """
    Input of one run. Lives only for the duration of that run.

    `html` is set on webhook re-entry; when present the PREVIEW step is
    skipped and the HTML is used as the template.
    """

    quote_id: str
    to: List[str]
    subject: str
    cc: List[str] = field(default_factory=list)
    version: Optional[str] = None
    comment: Optional[str] = None
    export_settings: List[str] = field(default_factory=list)
    pdf: Optional[str] = None
    pdf_name: Optional[str] = None
    thread_id: Optional[str] = None
    identificator: Optional[str] = None
    html: Optional[str] = None
    notify: bool = True
    correlation_id: str = field(default_factory=generate_correlation_id)


@dataclass
class OrchestrationResult:
    """Outcome of one run; returned to the caller and discarded."""

    outcome: OrchestrationOutcome
    correlation_id: str
    completed_steps: List[OrchestrationStep] = field(default_factory=list)
    failed_step: Optional[OrchestrationStep] = None
    error: Optional[AppException] = None
    message_id: Optional[str] = None
    warning: Optional[str] = None

    @property
    def email_sent(self) -> Optional[bool]:
        """
        True once SEND succeeded. None when a SEND failure left delivery
        unknown (the request may have reached the backend).
        """
        if self.outcome != OrchestrationOutcome.FAILED:
            return True
        if self.error is not None and self.error.context.get("delivery_unknown"):
            return None
        return False


@dataclass
class PreviewResult:
    """Template shown to the user before sending."""

    html: str
    body: Optional[str]
    has_comment_slot: bool


def merge_comment(template: str, comment: Optional[str], placeholder: str) -> str:
    """
    Put the comment into the template at the placeholder.

    The comment is HTML-escaped and its line breaks become <br>. Without a
    placeholder the comment is not rendered. The returned HTML never
    contains the placeholder, whatever the template or comment held.
    """
    if not placeholder:
        # an empty token marks no slot at all
        return template

    comment_html = ""
    if comment:
        escaped = html_lib.escape(comment.replace(placeholder, ""))
        comment_html = escaped.replace("\r\n", "\n").replace("\n", "<br>")

    merged = template.replace(placeholder, comment_html) if placeholder in template else template
    while placeholder in merged:
        merged = merged.replace(placeholder, "")
    return merged


async def render_preview(
    workflow: WorkflowClient,
    placeholder: str,
    quote_id: str,
    version: Optional[str] = None,
    export_settings: Optional[List[str]] = None,
) -> PreviewResult:
    """
    Render-only PREVIEW: template and default body, nothing is sent.

    The engine always receives an empty comment; the placeholder is
    stripped from the returned HTML. No mailbox is involved, so this needs
    no provider client.
    """
    preview = await workflow.preview(quote_id, version, export_settings, comment="")
    return PreviewResult(
        html=merge_comment(preview.html, None, placeholder),
        body=preview.body,
        has_comment_slot=placeholder in preview.html,
    )


class QuoteOrchestrator:
    """
    Runs the quote state machine for one request.

    Collaborators are injected per request: the provider client carries the
    caller's credential, so an orchestrator is never shared.
    """

    def __init__(
        self,
        provider: ProviderClient,
        workflow: WorkflowClient,
        pdf_source: PdfSource,
        placeholder: str,
        composer: Optional[MimeComposer] = None,
    ):
        self.provider = provider
        self.workflow = workflow
        self.pdf_source = pdf_source
        self.placeholder = placeholder
        self.composer = composer or MimeComposer()

    async def preview(
        self,
        quote_id: str,
        version: Optional[str] = None,
        export_settings: Optional[List[str]] = None,
    ) -> PreviewResult:
        """Render-only PREVIEW for this run's collaborators."""
        return await render_preview(
            self.workflow, self.placeholder, quote_id, version, export_settings
        )

    async def run(self, request: QuoteSendRequest) -> OrchestrationResult:
        """
        Execute the run and report its terminal state.

        Errors from PREVIEW through SEND end the run as FAILED with the
        failing step recorded; they are returned, not raised, so the caller
        decides how to present them. A NOTIFY error only adds a warning.

        Args:
            request: The run input

        Returns:
            OrchestrationResult
        """
        cid = request.correlation_id
        completed: List[OrchestrationStep] = []
        preview: Optional[QuotePreview] = None
        step = OrchestrationStep.PREVIEW if request.html is None else OrchestrationStep.COMPOSE
        logger.info(f"Quote {request.quote_id} run {cid} starting at {step.value}")

        try:
            if request.html is None:
                preview = await self.workflow.preview(
                    request.quote_id,
                    request.version,
                    request.export_settings,
                    comment="",
                )
                completed.append(step)
                template = preview.html
            else:
                template = request.html

            step = self._advance(cid, OrchestrationStep.COMPOSE)
            composed = self._compose(request, template, preview)
            completed.append(step)

            step = self._advance(cid, OrchestrationStep.DELIVER)
            composed = await self._deliver(request, composed, preview)
            completed.append(step)

            step = self._advance(cid, OrchestrationStep.SEND)
            message_id = await self.provider.send_message(composed)
            completed.append(step)
        except AppException as e:
            logger.warning(f"Quote {request.quote_id} run {cid} failed at {step.value}: {e.message}")
            return OrchestrationResult(
                outcome=OrchestrationOutcome.FAILED,
                correlation_id=cid,
                completed_steps=completed,
                failed_step=step,
                error=e,
            )

        result = OrchestrationResult(
            outcome=OrchestrationOutcome.SENT,
            correlation_id=cid,
            completed_steps=completed,
            message_id=message_id,
        )
        if not request.notify:
            logger.info(f"Quote {request.quote_id} run {cid} sent; notification not requested")
            return result

        step = self._advance(cid, OrchestrationStep.NOTIFY)
        try:
            await self.workflow.notify(
                request.quote_id,
                cid,
                version=request.version,
                provider=self.provider.provider.value,
                message_id=message_id,
                identificator=request.identificator,
            )
        except AppException as e:
            logger.warning(
                f"Quote {request.quote_id} run {cid} sent, but notifying the workflow engine "
                f"failed: {e.message}"
            )
            result.outcome = OrchestrationOutcome.SENT_NOTIFY_FAILED
            result.failed_step = step
            result.warning = f"Email sent, but the workflow engine was not notified: {e.message}"
            return result

        completed.append(step)
        logger.info(f"Quote {request.quote_id} run {cid} completed")
        return result

    def _advance(self, cid: str, step: OrchestrationStep) -> OrchestrationStep:
        logger.debug(f"Run {cid} entering {step.value}")
        return step

    def _compose(
        self,
        request: QuoteSendRequest,
        template: str,
        preview: Optional[QuotePreview],
    ) -> ComposedMessage:
        # No comment from the caller means the engine's default body is used
        comment = request.comment
        if comment is None and preview is not None:
            comment = preview.body

        if comment and self.placeholder not in template:
            logger.info(f"Run {request.correlation_id}: template has no comment slot; comment dropped")

        html = merge_comment(template, comment, self.placeholder)
        return self.composer.compose(
            to=request.to,
            subject=request.subject,
            html=html,
            cc=request.cc,
            thread_id=request.thread_id,
            correlation_id=request.correlation_id,
        )

    async def _deliver(
        self,
        request: QuoteSendRequest,
        composed: ComposedMessage,
        preview: Optional[QuotePreview],
    ) -> ComposedMessage:
        content = request.pdf
        filename = request.pdf_name
        if not content and preview is not None:
            content = preview.pdf_url
            filename = filename or preview.pdf_name

        attachment = await self.pdf_source.resolve(content, filename)
        if attachment is None:
            return composed
        return self.composer.attach(composed, attachment)

"""
Postmark transactional send client.

WHAT: Send-only ProviderClient over the Postmark /email endpoint.

WHY: Accounts without a connected mailbox still send quotes, from an
address derived from the company name. There is no mailbox behind it, so
every read and label operation fails with CapabilityMismatchError instead
of pretending the mailbox is empty.
"""

import logging
from typing import List, Optional

import httpx

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings
from mailbridge.core.exceptions import AuthenticationError, ValidationError
from mailbridge.mail.labels import LabelPlan
from mailbridge.mail.models import (
    AttachmentContent,
    ComposedMessage,
    Label,
    Message,
    MessagePage,
    Profile,
    Provider,
    Thread,
)
from mailbridge.mail.providers.base import DEFAULT_PAGE_SIZE, ProviderClient, unsupported
from mailbridge.mail.providers.http import UpstreamHttp, json_body

logger = logging.getLogger(__name__)


def sender_slug(company: str) -> str:
    """Company name as a mailbox local part: lower case, spaces removed."""
    return company.lower().replace(" ", "")


class PostmarkProvider(ProviderClient):
    """
    Postmark server, authenticated with a server token.

    The caller's bearer token, when present, is used as the server token;
    otherwise POSTMARK_SERVER_TOKEN from settings.
    """

    provider = Provider.POSTMARK

    def __init__(
        self,
        credential: ProviderCredential,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        company: Optional[str] = None,
    ):
        super().__init__(credential, settings, transport, company)
        self.base_url = settings.POSTMARK_API_BASE.rstrip("/")

    @property
    def server_token(self) -> str:
        """
        Resolved only when a send needs it, so mailbox calls still report
        the capability mismatch rather than a missing token.

        Raises:
            AuthenticationError: If neither a bearer token nor
                POSTMARK_SERVER_TOKEN is available
        """
        token = self.credential.bearer_token or self.settings.POSTMARK_SERVER_TOKEN
        if not token:
            raise AuthenticationError(message="No account connected")
        return token

    def _http(self) -> UpstreamHttp:
        return UpstreamHttp(
            backend=self.provider.value,
            headers={
                "X-Postmark-Server-Token": self.server_token,
                "Accept": "application/json",
            },
            timeout=self.settings.UPSTREAM_TIMEOUT_SECONDS,
            retry_delay=self.settings.RETRY_DELAY_SECONDS,
            transport=self.transport,
        )

    @property
    def sender_address(self) -> str:
        """
        Raises:
            ValidationError: If no company was given for this request
        """
        slug = sender_slug(self.company)
        if not slug:
            raise ValidationError(
                message="Postmark sends need a company name",
                field="company",
                reason="missing company",
            )
        return f"{slug}@{self.settings.POSTMARK_SENDER_DOMAIN}"

    # =========================================================================
    # Mailbox operations (not available)
    # =========================================================================

    async def list_messages(
        self,
        label_id: Optional[str] = None,
        query: Optional[str] = None,
        max_results: int = DEFAULT_PAGE_SIZE,
        page_token: Optional[str] = None,
    ) -> MessagePage:
        raise unsupported(self.provider, "listing messages")

    async def get_message(self, message_id: str) -> Message:
        raise unsupported(self.provider, "reading messages")

    async def get_thread(self, thread_id: str) -> Thread:
        raise unsupported(self.provider, "reading threads")

    async def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentContent:
        raise unsupported(self.provider, "attachments")

    async def list_labels(self) -> List[Label]:
        raise unsupported(self.provider, "labels")

    async def modify_labels(
        self,
        message_ids: List[str],
        add_ids: List[str],
        remove_ids: List[str],
    ) -> None:
        raise unsupported(self.provider, "labels")

    async def archive(self, message_id: str) -> LabelPlan:
        raise unsupported(self.provider, "archive")

    async def trash(self, message_id: str) -> LabelPlan:
        raise unsupported(self.provider, "trash")

    async def move(
        self,
        message_id: str,
        target_id: str,
        current_label: Optional[str] = None,
    ) -> LabelPlan:
        raise unsupported(self.provider, "move")

    # =========================================================================
    # Supported operations
    # =========================================================================

    async def get_profile(self) -> Profile:
        return Profile(email=self.sender_address, name=self.company)

    async def send_message(self, composed: ComposedMessage) -> str:
        payload = self.composer.to_postmark_payload(composed, sender=self.sender_address)
        response = await self._http().write_once("POST", f"{self.base_url}/email", json=payload)
        message_id = json_body(response).get("MessageID") or ""
        if not message_id:
            logger.warning(f"Postmark send {composed.correlation_id} accepted without a message id")
        else:
            logger.info(f"Postmark send {composed.correlation_id} accepted as {message_id}")
        return message_id

"""
Gmail REST API client.

WHAT: ProviderClient over https://gmail.googleapis.com/gmail/v1/users/me.

HOW:
- Lists fetch ids first, then format=metadata for each id concurrently
- Full messages are fetched as format=raw and decoded by MimeParser, so
  attachment ids are MIME part positions within that raw message
- Sends post the composed RFC 822 blob base64url-encoded
- Labels are native; modify uses messages/batchModify
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

import httpx

from mailbridge.core.auth import ProviderCredential, require_account_token
from mailbridge.core.config import Settings
from mailbridge.core.exceptions import MimeError
from mailbridge.mail.labels import LabelPlan, dedupe_ids
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
from mailbridge.mail.parser import sort_newest_first
from mailbridge.mail.providers.base import DEFAULT_PAGE_SIZE, MailboxProvider, clamp_page_size
from mailbridge.mail.providers.http import UpstreamHttp, json_body

logger = logging.getLogger(__name__)


METADATA_HEADERS = ("From", "To", "Cc", "Subject", "Date")


def decode_raw(raw: str) -> bytes:
    """Decode Gmail's base64url "raw" field (padding may be stripped)."""
    try:
        return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
    except (binascii.Error, ValueError) as e:
        raise MimeError(message="Gmail returned an undecodable message", field="raw", reason=str(e))


class GmailProvider(MailboxProvider):
    """Gmail mailbox, reached with the caller's OAuth access token."""

    provider = Provider.GMAIL

    def __init__(
        self,
        credential: ProviderCredential,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        company: Optional[str] = None,
    ):
        super().__init__(credential, settings, transport, company)
        self.base_url = settings.GMAIL_API_BASE.rstrip("/")
        self.http = UpstreamHttp(
            backend=self.provider.value,
            headers={
                "Authorization": f"Bearer {require_account_token(credential)}",
                "Accept": "application/json",
            },
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
            retry_delay=settings.RETRY_DELAY_SECONDS,
            transport=transport,
        )

    # =========================================================================
    # Reading
    # =========================================================================

    async def list_messages(
        self,
        label_id: Optional[str] = None,
        query: Optional[str] = None,
        max_results: int = DEFAULT_PAGE_SIZE,
        page_token: Optional[str] = None,
    ) -> MessagePage:
        params: Dict[str, Any] = {"maxResults": clamp_page_size(max_results)}
        if label_id:
            params["labelIds"] = label_id
        if query:
            # Gmail search syntax is native; forwarded untouched
            params["q"] = query
        if page_token:
            params["pageToken"] = page_token

        data = await self.http.get_json(f"{self.base_url}/messages", params=params)
        ids = [m["id"] for m in data.get("messages") or [] if m.get("id")]

        messages = await asyncio.gather(*(self._fetch_metadata(i) for i in ids))
        if label_id:
            messages = [m for m in messages if label_id in m.label_ids]

        return MessagePage(
            messages=sort_newest_first(list(messages)),
            next_page_token=data.get("nextPageToken"),
        )

    async def _fetch_metadata(self, message_id: str) -> Message:
        params = [("format", "metadata")] + [("metadataHeaders", h) for h in METADATA_HEADERS]
        data = await self.http.get_json(f"{self.base_url}/messages/{message_id}", params=params)
        return self.parser.parse_gmail_metadata(data)

    async def _fetch_raw(self, message_id: str) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.base_url}/messages/{message_id}", params={"format": "raw"}
        )

    async def get_message(self, message_id: str) -> Message:
        data = await self._fetch_raw(message_id)
        return self.parser.parse_raw(
            decode_raw(data.get("raw") or ""),
            message_id=data.get("id", message_id),
            thread_id=data.get("threadId", ""),
            label_ids=data.get("labelIds"),
            snippet=data.get("snippet"),
        )

    async def get_thread(self, thread_id: str) -> Thread:
        data = await self.http.get_json(
            f"{self.base_url}/threads/{thread_id}", params={"format": "minimal"}
        )
        ids = [m["id"] for m in data.get("messages") or [] if m.get("id")]
        # Gmail returns thread messages in chronological order
        messages = await asyncio.gather(*(self.get_message(i) for i in ids))
        return Thread(id=data.get("id", thread_id), messages=list(messages))

    async def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentContent:
        data = await self._fetch_raw(message_id)
        return self.parser.extract_attachment(decode_raw(data.get("raw") or ""), attachment_id)

    async def list_labels(self) -> List[Label]:
        data = await self.http.get_json(f"{self.base_url}/labels")
        return self.labels.normalize(data.get("labels") or [])

    async def get_profile(self) -> Profile:
        data = await self.http.get_json(f"{self.base_url}/profile")
        return Profile(email=data.get("emailAddress", ""))

    # =========================================================================
    # Writing
    # =========================================================================

    async def modify_labels(
        self,
        message_ids: List[str],
        add_ids: List[str],
        remove_ids: List[str],
    ) -> None:
        ids = dedupe_ids(message_ids)
        if not ids:
            return
        await self.http.modify(
            "POST",
            f"{self.base_url}/messages/batchModify",
            json={
                "ids": ids,
                "addLabelIds": dedupe_ids(add_ids),
                "removeLabelIds": dedupe_ids(remove_ids),
            },
        )

    async def apply_plan(self, message_id: str, plan: LabelPlan) -> None:
        await self.modify_labels([message_id], list(plan.add_ids), list(plan.remove_ids))

    async def send_message(self, composed: ComposedMessage) -> str:
        payload = self.composer.to_gmail_payload(composed)
        response = await self.http.write_once(
            "POST", f"{self.base_url}/messages/send", json=payload
        )
        message_id = json_body(response).get("id") or ""
        if not message_id:
            logger.warning(f"Gmail send {composed.correlation_id} accepted without a message id")
        else:
            logger.info(f"Gmail send {composed.correlation_id} accepted as {message_id}")
        return message_id

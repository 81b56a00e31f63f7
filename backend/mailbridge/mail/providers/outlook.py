"""
Microsoft Graph mail client.

WHAT: ProviderClient over https://graph.microsoft.com/v1.0/me.

WHY: Graph has folders instead of labels and JSON messages instead of raw
MIME. This client translates both into the shared model:
- a message's only label is its parent folder
- "add label X" is a move into folder X; removing a folder on its own has
  no Graph equivalent and is rejected
- the UNREAD pseudo-label maps onto the isRead flag

Search is best-effort: the free-text query is passed to Graph's $search,
which matches differently from Gmail's query language.
"""

import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from mailbridge.core.auth import ProviderCredential, require_account_token
from mailbridge.core.config import Settings
from mailbridge.core.exceptions import MimeError, UpstreamError, ValidationError
from mailbridge.mail.labels import UNREAD, LabelPlan, dedupe_ids
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
from mailbridge.mail.parser import graph_attachment_ref, sort_newest_first
from mailbridge.mail.providers.base import DEFAULT_PAGE_SIZE, MailboxProvider, clamp_page_size
from mailbridge.mail.providers.http import UpstreamHttp, json_body

logger = logging.getLogger(__name__)


LIST_FIELDS = (
    "id,conversationId,subject,bodyPreview,receivedDateTime,isRead,"
    "hasAttachments,from,toRecipients,ccRecipients,parentFolderId"
)
FULL_FIELDS = LIST_FIELDS + ",body"

# Graph accepts these names in place of folder ids
WELL_KNOWN_FOLDERS = frozenset(
    {"inbox", "drafts", "sentitems", "deleteditems", "junkemail", "archive", "outbox"}
)

SKIP_TOKEN_PREFIX = "t."
THREAD_LIMIT = 50


def encode_page_token(next_link: Optional[str]) -> Optional[str]:
    """
    Turn Graph's @odata.nextLink into an opaque page token.

    Only the paging parameter is kept, never the link itself, so a caller
    cannot make the proxy fetch an arbitrary URL with their token.
    """
    if not next_link:
        return None
    query = parse_qs(urlparse(next_link).query)
    if "$skiptoken" in query:
        return SKIP_TOKEN_PREFIX + query["$skiptoken"][0]
    if "$skip" in query:
        return query["$skip"][0]
    return None


def decode_page_token(token: Optional[str]) -> Dict[str, str]:
    if not token:
        return {}
    if token.startswith(SKIP_TOKEN_PREFIX):
        return {"$skiptoken": token[len(SKIP_TOKEN_PREFIX):]}
    if token.isdigit():
        return {"$skip": token}
    raise ValidationError(
        message="Invalid page token",
        field="page_token",
        reason="not a token returned by a previous page",
    )


def search_term(query: str) -> str:
    # $search takes one quoted phrase; embedded quotes would end it early
    return '"' + query.replace('"', " ").strip() + '"'


class OutlookProvider(MailboxProvider):
    """Outlook / Microsoft 365 mailbox via Microsoft Graph."""

    provider = Provider.OUTLOOK

    def __init__(
        self,
        credential: ProviderCredential,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        company: Optional[str] = None,
    ):
        super().__init__(credential, settings, transport, company)
        self.base_url = settings.GRAPH_API_BASE.rstrip("/")
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
        params: Dict[str, Any] = {
            "$top": clamp_page_size(max_results),
            "$select": LIST_FIELDS,
        }
        if query:
            # Graph refuses $orderby together with $search; sorted locally below
            params["$search"] = search_term(query)
        else:
            params["$orderby"] = "receivedDateTime desc"
        params.update(decode_page_token(page_token))

        folder_id = await self._resolve_folder_id(label_id) if label_id else None
        url = (
            f"{self.base_url}/mailFolders/{folder_id}/messages"
            if folder_id
            else f"{self.base_url}/messages"
        )

        data = await self.http.get_json(url, params=params)
        messages = [self.parser.parse_graph_message(m) for m in data.get("value") or []]
        if folder_id:
            messages = [m for m in messages if folder_id in m.label_ids]

        return MessagePage(
            messages=sort_newest_first(messages),
            next_page_token=encode_page_token(data.get("@odata.nextLink")),
        )

    async def _resolve_folder_id(self, label_id: str) -> str:
        """Map a well-known folder name ("inbox") to the folder's real id."""
        if label_id.lower() not in WELL_KNOWN_FOLDERS:
            return label_id
        data = await self.http.get_json(
            f"{self.base_url}/mailFolders/{label_id}", params={"$select": "id"}
        )
        return data.get("id") or label_id

    async def get_message(self, message_id: str) -> Message:
        data = await self.http.get_json(
            f"{self.base_url}/messages/{message_id}", params={"$select": FULL_FIELDS}
        )
        return await self._with_attachments(self.parser.parse_graph_message(data, full=True))

    async def _with_attachments(self, message: Message) -> Message:
        if not message.has_attachments:
            return message
        data = await self.http.get_json(
            f"{self.base_url}/messages/{message.id}/attachments",
            params={"$select": "id,name,contentType,size,isInline"},
        )
        refs = [graph_attachment_ref(a) for a in data.get("value") or []]
        message.attachments = [r for r in refs if r is not None]
        return message

    async def get_thread(self, thread_id: str) -> Thread:
        escaped = thread_id.replace("'", "''")
        data = await self.http.get_json(
            f"{self.base_url}/messages",
            params={
                "$filter": f"conversationId eq '{escaped}'",
                "$select": FULL_FIELDS,
                "$top": THREAD_LIMIT,
            },
        )
        parsed = [self.parser.parse_graph_message(m, full=True) for m in data.get("value") or []]
        messages = await asyncio.gather(*(self._with_attachments(m) for m in parsed))
        oldest_first = list(reversed(sort_newest_first(list(messages))))
        return Thread(id=thread_id, messages=oldest_first)

    async def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentContent:
        data = await self.http.get_json(
            f"{self.base_url}/messages/{message_id}/attachments/{attachment_id}"
        )
        try:
            content = base64.b64decode(data.get("contentBytes") or "")
        except (binascii.Error, ValueError) as e:
            raise MimeError(
                message="Attachment content could not be decoded",
                field="contentBytes",
                reason=str(e),
            )
        return AttachmentContent(
            filename=data.get("name") or "attachment",
            content_type=data.get("contentType") or "application/octet-stream",
            data=content,
        )

    async def list_labels(self) -> List[Label]:
        data = await self.http.get_json(f"{self.base_url}/mailFolders", params={"$top": 100})
        return self.labels.normalize(data.get("value") or [])

    async def get_profile(self) -> Profile:
        data = await self.http.get_json(
            self.base_url, params={"$select": "displayName,mail,userPrincipalName"}
        )
        return Profile(
            email=data.get("mail") or data.get("userPrincipalName") or "",
            name=data.get("displayName"),
        )

    # =========================================================================
    # Writing
    # =========================================================================

    async def modify_labels(
        self,
        message_ids: List[str],
        add_ids: List[str],
        remove_ids: List[str],
    ) -> None:
        """
        Translate a label change into folder moves and read-flag updates.

        Checked in full before the first call, so an unsupported request
        changes nothing.

        Raises:
            ValidationError: More than one destination folder, or a folder
                removal without a destination
        """
        add = dedupe_ids(add_ids)
        remove = dedupe_ids(remove_ids)
        folders_to_add = [a for a in add if a != UNREAD]
        folders_to_remove = [r for r in remove if r != UNREAD]

        if len(folders_to_add) > 1:
            raise ValidationError(
                message="Outlook messages live in exactly one folder",
                field="add_label_ids",
                reason="more than one destination folder",
            )
        if folders_to_remove and not folders_to_add:
            raise ValidationError(
                message="Removing a folder requires a destination folder on Outlook",
                field="remove_label_ids",
                reason="folder removal without a move",
            )

        read_flag: Optional[bool] = None
        if UNREAD in add:
            read_flag = False
        elif UNREAD in remove:
            read_flag = True

        for message_id in dedupe_ids(message_ids):
            if read_flag is not None:
                await self.http.modify(
                    "PATCH",
                    f"{self.base_url}/messages/{message_id}",
                    json={"isRead": read_flag},
                )
            if folders_to_add:
                await self._move(message_id, folders_to_add[0])

    async def _move(self, message_id: str, folder_id: str) -> None:
        await self.http.modify(
            "POST",
            f"{self.base_url}/messages/{message_id}/move",
            json={"destinationId": folder_id},
        )

    async def apply_plan(self, message_id: str, plan: LabelPlan) -> None:
        if plan.destination_id:
            await self._move(message_id, plan.destination_id)

    async def send_message(self, composed: ComposedMessage) -> str:
        """
        Create a draft, then send it.

        Two calls so the caller gets a message id back (sendMail returns
        none). Only the second call delivers anything.
        """
        payload = self.composer.to_graph_payload(composed)
        draft = await self.http.write_once(
            "POST", f"{self.base_url}/messages", delivers=False, json=payload
        )
        draft_id = json_body(draft).get("id")
        if not draft_id:
            raise UpstreamError(
                message="Outlook did not return a draft id",
                backend=self.provider.value,
                upstream_status=draft.status_code,
            )

        await self.http.write_once("POST", f"{self.base_url}/messages/{draft_id}/send")
        logger.info(f"Outlook send {composed.correlation_id} accepted as {draft_id}")
        return draft_id

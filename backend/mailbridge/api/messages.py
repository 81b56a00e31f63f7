"""
Messages API Routes.

WHAT: REST API endpoints for reading, sending and filing mailbox messages.

WHY: The widget talks to one API whatever mailbox the user connected:
1. List and read messages (any valid key)
2. Send directly (Admin key)
3. Archive, trash and move (Admin key)

HOW: Uses FastAPI with dependency injection. Every request builds its own
provider client from the caller's credential; nothing outlives the
response.
"""

import base64
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings, get_settings
from mailbridge.core.deps import (
    build_provider,
    get_http_transport,
    get_provider_client,
    require_admin_credential,
)
from mailbridge.mail.composer import decode_base64_content
from mailbridge.mail.labels import LabelPlan
from mailbridge.mail.models import Address, Message, OutgoingAttachment
from mailbridge.mail.parser import collapse_threads
from mailbridge.mail.providers import ProviderClient
from mailbridge.mail.providers.base import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from mailbridge.schemas.mail import (
    AddressResponse,
    AttachmentContentResponse,
    AttachmentResponse,
    LabelActionRequest,
    LabelActionResponse,
    MessageListResponse,
    MessageResponse,
    MoveRequest,
    SendMessageRequest,
    SendMessageResponse,
    ThreadResponse,
)

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/messages", tags=["messages"])
threads_router = APIRouter(prefix="/threads", tags=["messages"])


def _address_to_response(address: Optional[Address]) -> Optional[AddressResponse]:
    if address is None:
        return None
    return AddressResponse(email=address.email, name=address.name)


def _message_to_response(message: Message) -> MessageResponse:
    """
    Convert a normalized Message to its response schema.

    WHY: Consistent response formatting across backends.
    """
    return MessageResponse(
        id=message.id,
        thread_id=message.thread_id,
        sender=_address_to_response(message.sender),
        to=[_address_to_response(a) for a in message.to],
        cc=[_address_to_response(a) for a in message.cc],
        subject=message.subject,
        snippet=message.snippet,
        date=message.date,
        unread=message.unread,
        has_attachments=message.has_attachments,
        label_ids=message.label_ids,
        body_html=message.body_html,
        body_text=message.body_text,
        attachments=[
            AttachmentResponse(
                id=a.id,
                filename=a.filename,
                content_type=a.content_type,
                size=a.size,
            )
            for a in message.attachments
        ],
        messages_in_thread=message.messages_in_thread,
    )


def _plan_to_response(message_id: str, plan: LabelPlan) -> LabelActionResponse:
    return LabelActionResponse(
        message_id=message_id,
        added_label_ids=list(plan.add_ids),
        removed_label_ids=list(plan.remove_ids),
    )


# ============================================================================
# Read Endpoints
# ============================================================================


@router.get("", response_model=MessageListResponse)
async def list_messages(
    label_id: Optional[str] = Query(None, description="Only messages under this label/folder"),
    q: Optional[str] = Query(None, max_length=500, description="Free-text search"),
    max_results: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    page_token: Optional[str] = Query(None, description="Token from a previous page"),
    collapse: bool = Query(False, alias="collapse_threads", description="One entry per thread"),
    client: ProviderClient = Depends(get_provider_client),
):
    """
    List messages, newest first.

    WHAT: One page of messages under a label/folder, optionally filtered by
    a search query.

    WHY: Search is translated per backend on a best-effort basis; the label
    filter is exact.
    """
    page = await client.list_messages(
        label_id=label_id,
        query=q,
        max_results=max_results,
        page_token=page_token,
    )
    messages = collapse_threads(page.messages) if collapse else page.messages

    return MessageListResponse(
        items=[_message_to_response(m) for m in messages],
        next_page_token=page.next_page_token,
    )


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: str,
    client: ProviderClient = Depends(get_provider_client),
):
    """
    Get a message with its parsed body and attachment metadata.
    """
    message = await client.get_message(message_id)
    return _message_to_response(message)


@router.get(
    "/{message_id}/attachments/{attachment_id}",
    response_model=AttachmentContentResponse,
)
async def get_attachment(
    message_id: str,
    attachment_id: str,
    client: ProviderClient = Depends(get_provider_client),
):
    """
    Fetch attachment bytes.

    WHY: Attachments are listed by id only; bytes are fetched on demand.
    """
    content = await client.get_attachment(message_id, attachment_id)
    return AttachmentContentResponse(
        filename=content.filename,
        content_type=content.content_type,
        size=len(content.data),
        data=base64.b64encode(content.data).decode("ascii"),
    )


@threads_router.get("/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: str,
    client: ProviderClient = Depends(get_provider_client),
):
    """Get every message of a conversation, oldest first."""
    thread = await client.get_thread(thread_id)
    return ThreadResponse(
        id=thread.id,
        messages=[_message_to_response(m) for m in thread.messages],
    )


# ============================================================================
# Write Endpoints (Admin)
# ============================================================================


@router.post("/send", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """
    Send an email directly.

    WHAT: Composes and sends one message. The send is issued exactly once;
    a failure is reported, never retried.
    """
    client = build_provider(request.provider, credential, settings, transport, request.company)

    attachments = [
        OutgoingAttachment(
            filename=a.filename,
            content=decode_base64_content(a.content, field=f"attachments[{i}].content"),
            mime_type=a.mime_type,
        )
        for i, a in enumerate(request.attachments)
    ]
    composed = client.composer.compose(
        to=request.to,
        subject=request.subject,
        html=request.body,
        cc=request.cc,
        attachments=attachments,
        thread_id=request.thread_id,
    )

    message_id = await client.send_message(composed)
    logger.info(
        f"Sent message via {request.provider.value} "
        f"({composed.correlation_id}, {len(composed.to)} recipient(s))"
    )

    return SendMessageResponse(message_id=message_id, correlation_id=composed.correlation_id)


@router.post("/{message_id}/archive", response_model=LabelActionResponse)
async def archive_message(
    message_id: str,
    request: LabelActionRequest,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """
    Archive a message.

    WHY: Gmail archives by removing INBOX; Outlook moves the message to its
    Archive folder. Without an Archive folder the call fails with 404 and
    the message stays where it was.
    """
    client = build_provider(request.provider, credential, settings, transport)
    plan = await client.archive(message_id)
    return _plan_to_response(message_id, plan)


@router.post("/{message_id}/trash", response_model=LabelActionResponse)
async def trash_message(
    message_id: str,
    request: LabelActionRequest,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """Move a message to the trash / deleted items."""
    client = build_provider(request.provider, credential, settings, transport)
    plan = await client.trash(message_id)
    return _plan_to_response(message_id, plan)


@router.post("/{message_id}/move", response_model=LabelActionResponse)
async def move_message(
    message_id: str,
    request: MoveRequest,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """
    Move a message to another label/folder.

    WHAT: On Gmail the label it is shown under (current_label) is removed,
    unless that label is a terminal one (Trash, Spam).
    """
    client = build_provider(request.provider, credential, settings, transport)
    plan = await client.move(message_id, request.label_id, request.current_label)
    return _plan_to_response(message_id, plan)

"""
Mail Pydantic Schemas.

WHAT: Request/Response models for the mailbox endpoints (messages,
threads, labels, profile, direct send).

WHY: Pydantic schemas provide:
1. Request validation (the provider enum is closed, so an unknown backend
   fails here with 400 and never reaches a client)
2. Response serialization of the normalized mail model
3. OpenAPI documentation

HOW: Responses mirror mailbridge.mail.models; the API layer converts with
the `_x_to_response` helpers in each router.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from mailbridge.mail.models import LabelType, Provider


# ============================================================================
# Request Schemas
# ============================================================================


class OutgoingAttachmentRequest(BaseModel):
    """One attachment of a direct send, base64-encoded."""

    filename: str = Field(..., min_length=1, max_length=255, description="File name")
    content: str = Field(..., min_length=1, description="Base64 content or data URI")
    mime_type: str = Field(
        default="application/octet-stream",
        max_length=255,
        description="MIME type",
    )


class SendMessageRequest(BaseModel):
    """
    Request schema for a direct send.

    WHAT: Recipients, subject and HTML body. The plain-text part is derived
    from the HTML.

    WHY: Addresses are validated by MimeComposer, which names the offending
    field; here they are only required to be present.
    """

    provider: Provider = Field(..., description="Mail backend")
    to: List[str] = Field(..., min_length=1, description="Recipient addresses")
    cc: List[str] = Field(default=[], description="Cc addresses")
    subject: str = Field(default="", max_length=998, description="Subject line")
    body: str = Field(..., min_length=1, description="HTML body")
    thread_id: Optional[str] = Field(None, description="Thread to reply in (Gmail)")
    attachments: List[OutgoingAttachmentRequest] = Field(
        default=[], max_length=10, description="Attachments"
    )
    company: Optional[str] = Field(
        None, max_length=255, description="Company name (Postmark sender)"
    )


class BatchModifyRequest(BaseModel):
    """
    Request schema for adding/removing labels across messages.

    WHAT: One label change applied to every id.
    """

    provider: Provider = Field(..., description="Mail backend")
    ids: List[str] = Field(..., min_length=1, max_length=1000, description="Message IDs")
    add_label_ids: List[str] = Field(default=[], description="Labels to add")
    remove_label_ids: List[str] = Field(default=[], description="Labels to remove")


class LabelActionRequest(BaseModel):
    """Request schema for archive and trash."""

    provider: Provider = Field(..., description="Mail backend")
    current_label: Optional[str] = Field(
        None, description="Label/folder the message is shown under"
    )


class MoveRequest(LabelActionRequest):
    """Request schema for moving a message to another label/folder."""

    label_id: str = Field(..., min_length=1, description="Target label/folder ID")


# ============================================================================
# Response Schemas
# ============================================================================


class AddressResponse(BaseModel):
    """Mailbox address with display name."""

    email: str
    name: Optional[str] = None


class AttachmentResponse(BaseModel):
    """Attachment metadata; bytes are fetched by id."""

    id: str
    filename: str
    content_type: str
    size: int


class MessageResponse(BaseModel):
    """
    Response schema for a message.

    WHAT: Normalized message. Body fields are null in list responses.
    """

    id: str
    thread_id: str
    sender: Optional[AddressResponse] = Field(None, serialization_alias="from")
    to: List[AddressResponse] = []
    cc: List[AddressResponse] = []
    subject: Optional[str] = None
    snippet: str = ""
    date: Optional[datetime] = None
    unread: bool = False
    has_attachments: bool = False
    label_ids: List[str] = []
    body_html: Optional[str] = None
    body_text: Optional[str] = None
    attachments: List[AttachmentResponse] = []
    messages_in_thread: Optional[int] = None


class MessageListResponse(BaseModel):
    """Paginated message list, newest first."""

    items: List[MessageResponse]
    next_page_token: Optional[str] = None


class ThreadResponse(BaseModel):
    """All messages of a conversation, oldest first."""

    id: str
    messages: List[MessageResponse]


class AttachmentContentResponse(BaseModel):
    """Attachment bytes, base64-encoded."""

    filename: str
    content_type: str
    size: int
    data: str = Field(..., description="Base64 content")


class LabelResponse(BaseModel):
    """Gmail label or Outlook folder."""

    id: str
    name: str
    type: LabelType


class LabelListResponse(BaseModel):
    items: List[LabelResponse]


class LabelActionResponse(BaseModel):
    """
    Result of archive / trash / move.

    WHAT: The label ids actually added and removed, so the UI can update
    its lists without refetching.
    """

    success: bool = True
    message_id: str
    added_label_ids: List[str] = []
    removed_label_ids: List[str] = []


class BatchModifyResponse(BaseModel):
    success: bool = True
    modified: int


class ProfileResponse(BaseModel):
    """Account display identity."""

    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None


class SendMessageResponse(BaseModel):
    """Result of a direct send."""

    success: bool = True
    message_id: Optional[str] = None
    correlation_id: str

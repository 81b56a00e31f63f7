"""
Normalized mail model shared by every backend.

WHAT: Plain data containers for messages, labels, attachments and outgoing
mail.

WHY: Gmail, Microsoft Graph and Postmark describe the same things with
incompatible wire formats. Providers translate into these types at the edge
so the API layer and the quote workflow never see backend-specific shapes.
Instances are built per request and discarded with the response.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Provider(str, Enum):
    """
    Supported mail backends.

    WHY: Closed set. An unknown value is rejected at request validation and
    never mapped to a default backend.
    """

    GMAIL = "gmail"
    """Gmail REST API (labels, raw MIME send)."""

    OUTLOOK = "outlook"
    """Microsoft Graph mail API (folders, structured JSON send)."""

    POSTMARK = "postmark"
    """Postmark transactional send API (send only)."""


class LabelType(str, Enum):
    """Whether a label is defined by the backend or created by the user."""

    SYSTEM = "system"
    USER = "user"


@dataclass(frozen=True)
class Address:
    """A single mailbox address with optional display name."""

    email: str
    name: Optional[str] = None

    def formatted(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass(frozen=True)
class AttachmentRef:
    """
    Attachment metadata. Bytes are fetched separately by `id`.
    """

    id: str
    filename: str
    content_type: str
    size: int


@dataclass
class Message:
    """
    One email, normalized.

    Body fields and attachments are only populated on a full fetch; list
    calls leave them empty.
    """

    id: str
    thread_id: str
    sender: Optional[Address] = None
    to: List[Address] = field(default_factory=list)
    cc: List[Address] = field(default_factory=list)
    subject: Optional[str] = None
    snippet: str = ""
    date: Optional[datetime] = None
    unread: bool = False
    has_attachments: bool = False
    label_ids: List[str] = field(default_factory=list)
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    attachments: List[AttachmentRef] = field(default_factory=list)
    messages_in_thread: Optional[int] = None


@dataclass
class MessagePage:
    """A page of messages, newest first."""

    messages: List[Message]
    next_page_token: Optional[str] = None


@dataclass
class Thread:
    """All messages of one conversation, oldest first."""

    id: str
    messages: List[Message]


@dataclass(frozen=True)
class Label:
    """A Gmail label or an Outlook folder."""

    id: str
    name: str
    type: LabelType = LabelType.USER


@dataclass(frozen=True)
class Profile:
    """Display identity of the connected account."""

    email: str
    name: Optional[str] = None
    avatar: Optional[str] = None


@dataclass(frozen=True)
class AttachmentContent:
    """Attachment bytes returned by a lazy fetch."""

    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class OutgoingAttachment:
    """A file to attach to an outgoing message."""

    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class ComposedMessage:
    """
    A validated outgoing message, ready to be serialized for a backend.

    WHAT: Produced by MimeComposer; addresses are already checked and the
    plain-text fallback is already derived from the HTML.
    """

    to: List[str]
    cc: List[str]
    subject: str
    html: str
    text: str
    correlation_id: str
    attachments: List[OutgoingAttachment] = field(default_factory=list)
    thread_id: Optional[str] = None

    def with_attachment(self, attachment: OutgoingAttachment) -> "ComposedMessage":
        return replace(self, attachments=[*self.attachments, attachment])

"""
Incoming message decoding.

WHAT: Turns what a backend returns (a raw RFC 822 blob, Gmail's structured
payload, or a Graph message resource) into the normalized Message model.

WHY: The widget renders one shape. Header casing, address formats, date
formats and body selection differ per backend, so all of that is settled
here and nowhere else.

HOW:
- parse_raw() walks the MIME tree with the stdlib email package
- parse_gmail_metadata() reads Gmail's format=metadata JSON for list views
- parse_graph_message() reads a Graph message resource
- Bodies prefer HTML and fall back to plain text
- Parts under multipart/related are rendered inline, never listed as files
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email import message_from_bytes, policy
from email.message import EmailMessage
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Dict, Iterator, List, Optional

from mailbridge.core.exceptions import MimeError, ResourceNotFoundError
from mailbridge.mail.composer import html_to_text
from mailbridge.mail.models import Address, AttachmentContent, AttachmentRef, Message

logger = logging.getLogger(__name__)


SNIPPET_LENGTH = 200
UNREAD_LABEL = "UNREAD"


# ============================================================================
# Header helpers
# ============================================================================


def parse_address_list(value: Optional[str]) -> List[Address]:
    """
    Split an address header into Address entries.

    Accepts anything RFC 5322 allows, including quoted display names that
    contain commas. Entries without an "@" are dropped.
    """
    if not value:
        return []
    addresses = []
    for name, email in getaddresses([str(value)]):
        if "@" not in email:
            continue
        addresses.append(Address(email=email.strip().lower(), name=name.strip() or None))
    return addresses


def parse_address(value: Optional[str]) -> Optional[Address]:
    addresses = parse_address_list(value)
    return addresses[0] if addresses else None


def parse_header_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 Date header into an aware datetime (UTC if unzoned)."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Date header: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_iso_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a Graph ISO 8601 timestamp ("2024-05-01T09:30:00Z")."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable ISO timestamp: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_epoch_millis(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def make_snippet(text: Optional[str], html: Optional[str]) -> str:
    source = text if text else html_to_text(html or "")
    return " ".join(source.split())[:SNIPPET_LENGTH]


# ============================================================================
# MIME tree walk
# ============================================================================


@dataclass
class _Leaf:
    path: str
    part: EmailMessage
    in_related: bool


@dataclass
class _Body:
    html: Optional[str] = None
    text: Optional[str] = None
    attachments: List[AttachmentRef] = field(default_factory=list)


def _child_path(parent: str, index: int) -> str:
    return f"{parent}.{index}" if parent else str(index)


def _iter_leaves(part: EmailMessage, path: str = "", in_related: bool = False) -> Iterator[_Leaf]:
    """
    Yield every non-multipart part with its dotted position in the tree.

    The position ("1", "1.0", ...) doubles as the attachment id for raw
    messages, since it is stable for a given message.
    """
    if part.is_multipart():
        related = in_related or part.get_content_type() == "multipart/related"
        for index, child in enumerate(part.iter_parts()):
            yield from _iter_leaves(child, _child_path(path, index), related)
    else:
        yield _Leaf(path=path, part=part, in_related=in_related)


def _is_attachment(leaf: _Leaf) -> bool:
    if leaf.in_related:
        # inline images and stylesheets belong to the rendered body,
        # whatever disposition the sender gave them
        return False
    if leaf.part.get_content_disposition() == "attachment":
        return True
    return bool(leaf.part.get_filename())


def _decode_text(part: EmailMessage) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _walk_body(root: EmailMessage) -> _Body:
    body = _Body()
    for leaf in _iter_leaves(root):
        if _is_attachment(leaf):
            payload = leaf.part.get_payload(decode=True) or b""
            body.attachments.append(
                AttachmentRef(
                    id=leaf.path or "0",
                    filename=leaf.part.get_filename() or "attachment",
                    content_type=leaf.part.get_content_type(),
                    size=len(payload),
                )
            )
            continue

        content_type = leaf.part.get_content_type()
        if content_type == "text/html" and body.html is None:
            body.html = _decode_text(leaf.part)
        elif content_type == "text/plain" and body.text is None:
            body.text = _decode_text(leaf.part)
    return body


def _load(raw: bytes) -> EmailMessage:
    if not raw:
        raise MimeError(message="Empty message", field="raw", reason="no bytes to parse")
    try:
        return message_from_bytes(raw, policy=policy.default)
    except (TypeError, ValueError) as e:
        raise MimeError(message="Message is not valid MIME", field="raw", reason=str(e))


# ============================================================================
# Gmail structured payload helpers
# ============================================================================


def gmail_headers(payload: Dict[str, Any]) -> Dict[str, str]:
    """Gmail header list as a dict with lower-cased names (first value wins)."""
    headers: Dict[str, str] = {}
    for header in payload.get("headers") or []:
        name = (header.get("name") or "").lower()
        if name and name not in headers:
            headers[name] = header.get("value") or ""
    return headers


def gmail_payload_has_attachments(payload: Dict[str, Any], in_related: bool = False) -> bool:
    """
    Recursively check a Gmail payload for user-visible attachments.

    A part counts when it carries a filename and is not inside
    multipart/related.
    """
    if not payload:
        return False
    if payload.get("filename") and not in_related:
        return True
    related = in_related or payload.get("mimeType") == "multipart/related"
    return any(gmail_payload_has_attachments(p, related) for p in payload.get("parts") or [])


# ============================================================================
# Parser
# ============================================================================


class MimeParser:
    """
    Decodes backend message representations into Message objects.
    """

    def parse_raw(
        self,
        raw: bytes,
        message_id: str,
        thread_id: str,
        label_ids: Optional[List[str]] = None,
        snippet: Optional[str] = None,
    ) -> Message:
        """
        Parse a complete RFC 822 message (Gmail format=raw, or our own output).

        Args:
            raw: Message bytes
            message_id: Backend message id
            thread_id: Backend thread id
            label_ids: Labels the backend reports for the message
            snippet: Backend-provided preview; derived from the body if absent

        Returns:
            Message with body and attachment metadata populated

        Raises:
            MimeError: If the bytes cannot be decoded as a message
        """
        root = _load(raw)
        body = _walk_body(root)
        labels = list(label_ids or [])

        return Message(
            id=message_id,
            thread_id=thread_id,
            sender=parse_address(root.get("From")),
            to=parse_address_list(root.get("To")),
            cc=parse_address_list(root.get("Cc")),
            subject=str(root.get("Subject")) if root.get("Subject") is not None else None,
            snippet=snippet if snippet is not None else make_snippet(body.text, body.html),
            date=parse_header_date(root.get("Date")),
            unread=UNREAD_LABEL in labels,
            has_attachments=bool(body.attachments),
            label_ids=labels,
            body_text=body.text,
            body_html=body.html,
            attachments=body.attachments,
        )

    def extract_attachment(self, raw: bytes, attachment_id: str) -> AttachmentContent:
        """
        Return the decoded bytes of one part, addressed by its tree position.

        Raises:
            ResourceNotFoundError: If no attachment sits at that position
        """
        root = _load(raw)
        for leaf in _iter_leaves(root):
            if (leaf.path or "0") == attachment_id and _is_attachment(leaf):
                return AttachmentContent(
                    filename=leaf.part.get_filename() or "attachment",
                    content_type=leaf.part.get_content_type(),
                    data=leaf.part.get_payload(decode=True) or b"",
                )
        raise ResourceNotFoundError(
            message="Attachment not found",
            attachment_id=attachment_id,
        )

    def parse_gmail_metadata(self, data: Dict[str, Any]) -> Message:
        """
        Parse a Gmail format=metadata message for list views.

        Date comes from internalDate (the time Gmail received the message),
        falling back to the Date header.
        """
        payload = data.get("payload") or {}
        headers = gmail_headers(payload)
        labels = list(data.get("labelIds") or [])

        return Message(
            id=data.get("id", ""),
            thread_id=data.get("threadId", ""),
            sender=parse_address(headers.get("from")),
            to=parse_address_list(headers.get("to")),
            cc=parse_address_list(headers.get("cc")),
            subject=headers.get("subject"),
            snippet=data.get("snippet", ""),
            date=parse_epoch_millis(data.get("internalDate")) or parse_header_date(headers.get("date")),
            unread=UNREAD_LABEL in labels,
            has_attachments=gmail_payload_has_attachments(payload),
            label_ids=labels,
        )

    def parse_graph_message(self, data: Dict[str, Any], full: bool = False) -> Message:
        """
        Parse a Microsoft Graph message resource.

        Graph folders map onto labels, so the message's parent folder is its
        only label. The body is split by Graph's declared content type.

        Args:
            data: Graph message JSON
            full: Populate body fields (single-message fetch)
        """
        folder_id = data.get("parentFolderId")
        message = Message(
            id=data.get("id", ""),
            thread_id=data.get("conversationId") or data.get("id", ""),
            sender=_graph_address(data.get("from")),
            to=[a for a in (_graph_address(r) for r in data.get("toRecipients") or []) if a],
            cc=[a for a in (_graph_address(r) for r in data.get("ccRecipients") or []) if a],
            subject=data.get("subject"),
            snippet=data.get("bodyPreview") or "",
            date=parse_iso_date(data.get("receivedDateTime")),
            unread=not data.get("isRead", True),
            has_attachments=bool(data.get("hasAttachments")),
            label_ids=[folder_id] if folder_id else [],
        )

        if full:
            body = data.get("body") or {}
            content = body.get("content")
            if (body.get("contentType") or "").lower() == "html":
                message.body_html = content
                message.body_text = html_to_text(content or "")
            else:
                message.body_text = content
        return message


def _graph_address(value: Optional[Dict[str, Any]]) -> Optional[Address]:
    if not value:
        return None
    entry = value.get("emailAddress") or {}
    email = entry.get("address")
    if not email:
        return None
    return Address(email=email.lower(), name=entry.get("name") or None)


def graph_attachment_ref(data: Dict[str, Any]) -> Optional[AttachmentRef]:
    """Attachment metadata from a Graph attachment resource; inline parts are skipped."""
    if data.get("isInline"):
        return None
    return AttachmentRef(
        id=data.get("id", ""),
        filename=data.get("name") or "attachment",
        content_type=data.get("contentType") or "application/octet-stream",
        size=int(data.get("size") or 0),
    )


def collapse_threads(messages: List[Message]) -> List[Message]:
    """
    Keep the newest message of each thread, annotated with the thread size.

    Input order (newest first) is preserved.
    """
    counts: Dict[str, int] = {}
    for message in messages:
        counts[message.thread_id] = counts.get(message.thread_id, 0) + 1

    seen = set()
    collapsed = []
    for message in messages:
        if message.thread_id in seen:
            continue
        seen.add(message.thread_id)
        message.messages_in_thread = counts[message.thread_id]
        collapsed.append(message)
    return collapsed


def sort_newest_first(messages: List[Message]) -> List[Message]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(messages, key=lambda m: m.date or epoch, reverse=True)


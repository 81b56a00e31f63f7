"""
Outgoing message composition.

WHAT: Validates recipients, derives the plain-text fallback, builds the
multipart MIME tree and serializes it into each backend's send payload.

WHY: One composer guarantees that Gmail, Outlook and Postmark all send the
same content: multipart/alternative (text + HTML), wrapped in
multipart/mixed when a file is attached.

HOW:
- compose() validates everything up front and returns a ComposedMessage;
  nothing is sent if any address is malformed
- build_mime() turns it into an email.mime tree
- to_*_payload() produce the wire shapes
"""

import base64
import binascii
import logging
import secrets
import string
from email.header import Header
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, getaddresses, parseaddr
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup
from email_validator import EmailNotValidError, validate_email

from mailbridge.core.exceptions import MimeError, ValidationError
from mailbridge.mail.models import ComposedMessage, OutgoingAttachment

logger = logging.getLogger(__name__)


CORRELATION_PREFIX = "DI"
CORRELATION_ALPHABET = string.ascii_uppercase + string.digits
CORRELATION_HEADER = "X-Correlation-ID"
# Graph only accepts custom headers that start with "x-" in lower case
GRAPH_CORRELATION_HEADER = "x-correlation-id"


def generate_correlation_id() -> str:
    """
    Generate a short identifier for log correlation.

    Format: "DI" followed by 4 uppercase alphanumeric characters. Not a
    security token; collisions are acceptable.
    """
    suffix = "".join(secrets.choice(CORRELATION_ALPHABET) for _ in range(4))
    return f"{CORRELATION_PREFIX}{suffix}"


def html_to_text(html: str) -> str:
    """
    Derive a plain-text fallback by stripping markup.

    Script and style contents are dropped; runs of blank lines collapse.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head", "title"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")

    lines = [line.strip() for line in soup.get_text("\n").splitlines()]
    text: List[str] = []
    for line in lines:
        if line or (text and text[-1]):
            text.append(line)
    return "\n".join(text).strip()


def validate_address(value: str, field: str) -> str:
    """
    Check one address syntactically.

    Accepts "user@example.com" and "Name <user@example.com>".

    Returns:
        The address, trimmed, in its original display form

    Raises:
        MimeError: If the address is malformed (names the field)
    """
    candidate = (value or "").strip()
    # a comma inside a quoted display name is fine; two addresses are not
    parsed = getaddresses([candidate]) if candidate else []
    if len(parsed) != 1 or "\r" in candidate or "\n" in candidate:
        raise MimeError(
            message=f"Invalid email address in '{field}'",
            field=field,
            reason=f"malformed address: {value!r}",
        )

    _, addr = parsed[0]
    try:
        validate_email(addr, check_deliverability=False)
    except EmailNotValidError as e:
        raise MimeError(
            message=f"Invalid email address in '{field}'",
            field=field,
            reason=f"{value!r}: {e}",
        )
    return candidate


def validate_addresses(values: Iterable[str], field: str) -> List[str]:
    return [validate_address(v, field) for v in values]


def decode_base64_content(content: str, field: str) -> bytes:
    """
    Decode base64 file content, tolerating a data-URI prefix.

    Raises:
        MimeError: If the content is not valid base64
    """
    payload = content.strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    payload = "".join(payload.split())

    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MimeError(
            message=f"Invalid base64 content in '{field}'",
            field=field,
            reason=str(e),
        )


class MimeComposer:
    """
    Builds outgoing messages and backend send payloads.

    Stateless; one instance can serve every request.
    """

    def compose(
        self,
        to: List[str],
        subject: str,
        html: str,
        cc: Optional[List[str]] = None,
        attachments: Optional[List[OutgoingAttachment]] = None,
        thread_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> ComposedMessage:
        """
        Validate and assemble an outgoing message.

        Composition is all-or-nothing: the first invalid field raises and
        no partial message is returned.

        Args:
            to: Recipient addresses (at least one)
            subject: Subject line (single line)
            html: HTML body
            cc: Optional carbon-copy addresses
            attachments: Files to attach
            thread_id: Backend thread to reply into, where supported
            correlation_id: Reuse an existing id instead of generating one

        Returns:
            ComposedMessage ready for serialization

        Raises:
            ValidationError: If there are no recipients
            MimeError: If an address or the subject is malformed
        """
        if not to:
            raise ValidationError(
                message="At least one recipient is required",
                field="to",
                reason="empty recipient list",
            )

        valid_to = validate_addresses(to, "to")
        valid_cc = validate_addresses(cc or [], "cc")

        if "\r" in subject or "\n" in subject:
            raise MimeError(
                message="Subject must be a single line",
                field="subject",
                reason="line break in subject",
            )

        for attachment in attachments or []:
            self._check_attachment(attachment)

        return ComposedMessage(
            to=valid_to,
            cc=valid_cc,
            subject=subject,
            html=html,
            text=html_to_text(html),
            correlation_id=correlation_id or generate_correlation_id(),
            attachments=list(attachments or []),
            thread_id=thread_id,
        )

    def attach(self, composed: ComposedMessage, attachment: OutgoingAttachment) -> ComposedMessage:
        """Return a copy of `composed` with one more attachment."""
        self._check_attachment(attachment)
        return composed.with_attachment(attachment)

    def _check_attachment(self, attachment: OutgoingAttachment) -> None:
        if not attachment.filename or "\n" in attachment.filename or "\r" in attachment.filename:
            raise MimeError(
                message="Attachment needs a single-line filename",
                field="attachments.filename",
                reason=f"invalid filename: {attachment.filename!r}",
            )
        if "/" not in attachment.mime_type:
            raise MimeError(
                message="Attachment content type must be 'type/subtype'",
                field="attachments.mime_type",
                reason=f"invalid content type: {attachment.mime_type!r}",
            )

    # =========================================================================
    # MIME
    # =========================================================================

    def build_mime(self, composed: ComposedMessage) -> MIMEMultipart:
        """
        Build the MIME tree.

        Layout:
            multipart/alternative (text/plain, text/html)
        or, with attachments:
            multipart/mixed
              multipart/alternative (text/plain, text/html)
              application/pdf (base64)
        """
        alternative = MIMEMultipart("alternative")
        alternative.attach(MIMEText(composed.text, "plain", "utf-8"))
        alternative.attach(MIMEText(composed.html, "html", "utf-8"))

        if composed.attachments:
            root = MIMEMultipart("mixed")
            root.attach(alternative)
            for attachment in composed.attachments:
                maintype, subtype = attachment.mime_type.split("/", 1)
                part = MIMEBase(maintype, subtype, name=attachment.filename)
                part.set_payload(attachment.content)
                encoders.encode_base64(part)
                part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
                root.attach(part)
        else:
            root = alternative

        root["To"] = ", ".join(_header_address(a) for a in composed.to)
        if composed.cc:
            root["Cc"] = ", ".join(_header_address(a) for a in composed.cc)
        if composed.subject.isascii():
            root["Subject"] = composed.subject
        else:
            root["Subject"] = Header(composed.subject, "utf-8").encode()
        root["Date"] = formatdate(localtime=False)
        root[CORRELATION_HEADER] = composed.correlation_id
        return root

    def to_raw_bytes(self, composed: ComposedMessage) -> bytes:
        return self.build_mime(composed).as_bytes()

    # =========================================================================
    # Backend payloads
    # =========================================================================

    def to_gmail_payload(self, composed: ComposedMessage) -> Dict[str, Any]:
        """
        Gmail wants the whole RFC 822 message as one base64url blob.
        """
        raw = base64.urlsafe_b64encode(self.to_raw_bytes(composed)).decode("ascii")
        payload: Dict[str, Any] = {"raw": raw}
        if composed.thread_id:
            payload["threadId"] = composed.thread_id
        return payload

    def to_graph_payload(self, composed: ComposedMessage) -> Dict[str, Any]:
        """
        Microsoft Graph message resource (used to create a draft).
        """
        message: Dict[str, Any] = {
            "subject": composed.subject,
            "body": {"contentType": "HTML", "content": composed.html},
            "toRecipients": [_graph_recipient(a) for a in composed.to],
            "ccRecipients": [_graph_recipient(a) for a in composed.cc],
            "internetMessageHeaders": [
                {"name": GRAPH_CORRELATION_HEADER, "value": composed.correlation_id}
            ],
        }
        if composed.attachments:
            message["attachments"] = [
                {
                    "@odata.type": "#microsoft.graph.fileAttachment",
                    "name": a.filename,
                    "contentType": a.mime_type,
                    "contentBytes": base64.b64encode(a.content).decode("ascii"),
                }
                for a in composed.attachments
            ]
        return message

    def to_postmark_payload(self, composed: ComposedMessage, sender: str) -> Dict[str, Any]:
        """
        Postmark /email request body.
        """
        payload: Dict[str, Any] = {
            "From": sender,
            "To": ",".join(composed.to),
            "Subject": composed.subject,
            "HtmlBody": composed.html,
            "TextBody": composed.text,
            "Headers": [{"Name": CORRELATION_HEADER, "Value": composed.correlation_id}],
            "Attachments": [
                {
                    "Name": a.filename,
                    "Content": base64.b64encode(a.content).decode("ascii"),
                    "ContentType": a.mime_type,
                }
                for a in composed.attachments
            ],
        }
        if composed.cc:
            payload["Cc"] = ",".join(composed.cc)
        return payload


def _graph_recipient(address: str) -> Dict[str, Any]:
    name, email = parseaddr(address)
    entry: Dict[str, Any] = {"address": email}
    if name:
        entry["name"] = name
    return {"emailAddress": entry}


def _header_address(address: str) -> str:
    # formataddr RFC 2047-encodes non-ASCII display names
    return formataddr(parseaddr(address))

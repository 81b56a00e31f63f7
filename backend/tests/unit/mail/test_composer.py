"""
Unit tests for MimeComposer.

WHAT: Tests validation, MIME layout and the three backend payloads.

WHY: Every backend must send the same content; a malformed address must
stop the send before any network call.
"""

import base64
import re
from email import message_from_bytes, policy

import pytest

from mailbridge.core.exceptions import MimeError, ValidationError
from mailbridge.mail.composer import (
    MimeComposer,
    decode_base64_content,
    generate_correlation_id,
    html_to_text,
    validate_address,
)
from mailbridge.mail.models import OutgoingAttachment


CORRELATION_RE = re.compile(r"^DI[A-Z0-9]{4}$")


@pytest.fixture
def composer():
    return MimeComposer()


@pytest.fixture
def pdf():
    return OutgoingAttachment(filename="quote.pdf", content=b"%PDF-1.4 test", mime_type="application/pdf")


class TestCorrelationId:
    def test_format(self):
        for _ in range(200):
            assert CORRELATION_RE.match(generate_correlation_id())

    def test_compose_generates_one(self, composer):
        composed = composer.compose(to=["bob@example.com"], subject="Hi", html="<p>x</p>")
        assert CORRELATION_RE.match(composed.correlation_id)

    def test_compose_keeps_given_id(self, composer):
        composed = composer.compose(
            to=["bob@example.com"], subject="Hi", html="<p>x</p>", correlation_id="DIXY12"
        )
        assert composed.correlation_id == "DIXY12"


class TestValidation:
    def test_no_recipients(self, composer):
        with pytest.raises(ValidationError) as exc_info:
            composer.compose(to=[], subject="Hi", html="<p>x</p>")
        assert exc_info.value.field == "to"

    def test_malformed_cc_names_field(self, composer):
        with pytest.raises(MimeError) as exc_info:
            composer.compose(to=["bob@example.com"], cc=["not-an-address"], subject="Hi", html="x")
        assert exc_info.value.field == "cc"

    def test_display_name_form_accepted(self):
        assert validate_address(" Bob <bob@example.com> ", "to") == "Bob <bob@example.com>"

    def test_quoted_display_name_with_comma_accepted(self):
        assert validate_address('"Doe, John" <john@example.com>', "to") == '"Doe, John" <john@example.com>'

    def test_unquoted_comma_in_name_rejected(self):
        with pytest.raises(MimeError):
            validate_address("Doe, John <john@example.com>", "to")

    def test_two_addresses_in_one_entry_rejected(self):
        with pytest.raises(MimeError):
            validate_address("a@example.com, b@example.com", "to")

    def test_header_injection_rejected(self):
        with pytest.raises(MimeError):
            validate_address("bob@example.com\r\nBcc: eve@example.com", "to")

    def test_multiline_subject_rejected(self, composer):
        with pytest.raises(MimeError) as exc_info:
            composer.compose(to=["bob@example.com"], subject="Hi\nBcc: x", html="x")
        assert exc_info.value.field == "subject"

    def test_attachment_needs_content_type(self, composer):
        bad = OutgoingAttachment(filename="a.bin", content=b"x", mime_type="binary")
        with pytest.raises(MimeError):
            composer.compose(to=["bob@example.com"], subject="Hi", html="x", attachments=[bad])


class TestHtmlToText:
    def test_strips_markup_and_scripts(self):
        text = html_to_text("<p>Hello<br>World</p><script>alert(1)</script><style>p{}</style>")
        assert "Hello" in text
        assert "World" in text
        assert "alert" not in text
        assert "<" not in text

    def test_derived_text_part(self, composer):
        composed = composer.compose(to=["bob@example.com"], subject="Hi", html="<p>Hello <b>Bob</b></p>")
        assert "Hello" in composed.text
        assert "Bob" in composed.text


class TestBuildMime:
    def test_alternative_without_attachments(self, composer):
        composed = composer.compose(to=["bob@example.com"], subject="Hi", html="<p>x</p>")
        root = composer.build_mime(composed)

        assert root.get_content_type() == "multipart/alternative"
        types = [p.get_content_type() for p in root.get_payload()]
        assert types == ["text/plain", "text/html"]

    def test_mixed_with_attachment(self, composer, pdf):
        composed = composer.compose(
            to=["bob@example.com"], subject="Hi", html="<p>x</p>", attachments=[pdf]
        )
        root = composer.build_mime(composed)

        assert root.get_content_type() == "multipart/mixed"
        parts = root.get_payload()
        assert parts[0].get_content_type() == "multipart/alternative"
        assert parts[1].get_content_type() == "application/pdf"
        assert parts[1].get_filename() == "quote.pdf"
        assert parts[1].get_payload(decode=True) == b"%PDF-1.4 test"

    def test_headers(self, composer):
        composed = composer.compose(
            to=["Bob <bob@example.com>"],
            cc=["carol@example.com"],
            subject="Quote",
            html="<p>x</p>",
            correlation_id="DIAB12",
        )
        root = composer.build_mime(composed)

        assert root["X-Correlation-ID"] == "DIAB12"
        assert "bob@example.com" in root["To"]
        assert root["Cc"] == "carol@example.com"
        assert root["Subject"] == "Quote"

    def test_non_ascii_subject_survives(self, composer):
        composed = composer.compose(to=["bob@example.com"], subject="Angebot für Sie", html="x")
        parsed = message_from_bytes(composer.to_raw_bytes(composed), policy=policy.default)
        assert str(parsed["Subject"]) == "Angebot für Sie"


class TestPayloads:
    def test_gmail_payload(self, composer):
        composed = composer.compose(
            to=["bob@example.com"], subject="Hi", html="<p>x</p>", thread_id="t-1"
        )
        payload = composer.to_gmail_payload(composed)

        assert payload["threadId"] == "t-1"
        raw = base64.urlsafe_b64decode(payload["raw"])
        assert b"X-Correlation-ID" in raw

    def test_gmail_payload_without_thread(self, composer):
        composed = composer.compose(to=["bob@example.com"], subject="Hi", html="<p>x</p>")
        assert "threadId" not in composer.to_gmail_payload(composed)

    def test_graph_payload(self, composer, pdf):
        composed = composer.compose(
            to=["Bob <bob@example.com>"],
            subject="Hi",
            html="<p>x</p>",
            attachments=[pdf],
            correlation_id="DIAB12",
        )
        payload = composer.to_graph_payload(composed)

        assert payload["body"] == {"contentType": "HTML", "content": "<p>x</p>"}
        assert payload["toRecipients"] == [
            {"emailAddress": {"address": "bob@example.com", "name": "Bob"}}
        ]
        assert payload["internetMessageHeaders"] == [{"name": "x-correlation-id", "value": "DIAB12"}]
        attachment = payload["attachments"][0]
        assert attachment["@odata.type"] == "#microsoft.graph.fileAttachment"
        assert base64.b64decode(attachment["contentBytes"]) == b"%PDF-1.4 test"

    def test_postmark_payload(self, composer):
        composed = composer.compose(
            to=["bob@example.com", "dan@example.com"],
            cc=["carol@example.com"],
            subject="Hi",
            html="<p>Hello</p>",
            correlation_id="DIAB12",
        )
        payload = composer.to_postmark_payload(composed, sender="acme@quotes.example.com")

        assert payload["From"] == "acme@quotes.example.com"
        assert payload["To"] == "bob@example.com,dan@example.com"
        assert payload["Cc"] == "carol@example.com"
        assert payload["HtmlBody"] == "<p>Hello</p>"
        assert payload["TextBody"] == "Hello"
        assert payload["Headers"] == [{"Name": "X-Correlation-ID", "Value": "DIAB12"}]
        assert payload["Attachments"] == []


class TestDecodeBase64Content:
    def test_plain_base64(self):
        assert decode_base64_content(base64.b64encode(b"data").decode(), "pdf") == b"data"

    def test_data_uri(self):
        encoded = "data:application/pdf;base64," + base64.b64encode(b"data").decode()
        assert decode_base64_content(encoded, "pdf") == b"data"

    def test_whitespace_tolerated(self):
        encoded = base64.b64encode(b"some longer data").decode()
        wrapped = encoded[:8] + "\n" + encoded[8:]
        assert decode_base64_content(wrapped, "pdf") == b"some longer data"

    def test_invalid(self):
        with pytest.raises(MimeError) as exc_info:
            decode_base64_content("not base64!!", "pdf")
        assert exc_info.value.field == "pdf"

"""
Unit tests for MimeParser.

WHAT: Tests raw MIME parsing, Gmail metadata and Graph resources.

WHY: What the composer writes, the parser must read back unchanged; and
inline parts of multipart/related must never be listed as attachments.
"""

from datetime import datetime, timezone
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from mailbridge.core.exceptions import MimeError, ResourceNotFoundError
from mailbridge.mail.composer import MimeComposer
from mailbridge.mail.models import Message, OutgoingAttachment
from mailbridge.mail.parser import (
    MimeParser,
    collapse_threads,
    gmail_payload_has_attachments,
    graph_attachment_ref,
    make_snippet,
    parse_address_list,
    parse_header_date,
    sort_newest_first,
)
from tests.factories import GmailFactory, GraphFactory


@pytest.fixture
def parser():
    return MimeParser()


@pytest.fixture
def composer():
    return MimeComposer()


class TestRoundTrip:
    """Parsing composed output yields the composed HTML back."""

    @pytest.mark.parametrize(
        "html",
        [
            "<p>Hello</p>",
            "<html><body><h1>Quote</h1><p>Total: 1.234,00 €</p></body></html>",
            "<div>Line one<br>Line two</div>\n<p>Ünïcödé ✓</p>",
        ],
    )
    def test_html_body_identical(self, parser, composer, html):
        composed = composer.compose(to=["bob@example.com"], subject="Round trip", html=html)
        message = parser.parse_raw(composer.to_raw_bytes(composed), message_id="m", thread_id="t")

        assert message.body_html == html

    def test_headers_and_attachment(self, parser, composer):
        pdf = OutgoingAttachment(filename="quote.pdf", content=b"%PDF-1.4", mime_type="application/pdf")
        composed = composer.compose(
            to=["Bob <bob@example.com>"],
            cc=["carol@example.com"],
            subject="Quote 42",
            html="<p>x</p>",
            attachments=[pdf],
        )
        message = parser.parse_raw(composer.to_raw_bytes(composed), message_id="m", thread_id="t")

        assert message.subject == "Quote 42"
        assert message.to[0].email == "bob@example.com"
        assert message.to[0].name == "Bob"
        assert message.cc[0].email == "carol@example.com"
        assert message.has_attachments
        assert [(a.id, a.filename, a.size) for a in message.attachments] == [("1", "quote.pdf", 8)]

    def test_extract_attachment(self, parser, composer):
        pdf = OutgoingAttachment(filename="quote.pdf", content=b"%PDF-1.4", mime_type="application/pdf")
        composed = composer.compose(to=["bob@example.com"], subject="Q", html="x", attachments=[pdf])
        raw = composer.to_raw_bytes(composed)

        content = parser.extract_attachment(raw, "1")
        assert content.data == b"%PDF-1.4"
        assert content.content_type == "application/pdf"

    def test_extract_missing_attachment(self, parser, composer):
        composed = composer.compose(to=["bob@example.com"], subject="Q", html="x")
        with pytest.raises(ResourceNotFoundError):
            parser.extract_attachment(composer.to_raw_bytes(composed), "1")


class TestParseRaw:
    def test_inline_related_image_is_not_an_attachment(self, parser):
        related = MIMEMultipart("related")
        related.attach(MIMEText('<p><img src="cid:logo"></p>', "html", "utf-8"))
        image = MIMEImage(b"GIF89a", "gif", name="logo.gif")
        image.add_header("Content-ID", "<logo>")
        related.attach(image)
        related["Subject"] = "Inline"

        message = parser.parse_raw(related.as_bytes(), message_id="m", thread_id="t")

        assert message.body_html == '<p><img src="cid:logo"></p>'
        assert message.attachments == []
        assert not message.has_attachments

    def test_related_image_with_attachment_disposition(self, parser):
        related = MIMEMultipart("related")
        related.attach(MIMEText('<p><img src="cid:logo"></p>', "html", "utf-8"))
        image = MIMEImage(b"\x89PNG\r\n\x1a\n", "png")
        image.add_header("Content-Disposition", "attachment", filename="logo.png")
        image.add_header("Content-ID", "<logo>")
        related.attach(image)

        message = parser.parse_raw(related.as_bytes(), message_id="m", thread_id="t")

        assert message.attachments == []
        assert message.body_html == '<p><img src="cid:logo"></p>'

    def test_plain_text_only(self, parser):
        text = MIMEText("Just text", "plain", "utf-8")
        message = parser.parse_raw(text.as_bytes(), message_id="m", thread_id="t")

        assert message.body_text == "Just text"
        assert message.body_html is None
        assert message.snippet == "Just text"

    def test_unread_from_labels(self, parser):
        raw = MIMEText("x", "plain", "utf-8").as_bytes()
        assert parser.parse_raw(raw, "m", "t", label_ids=["INBOX", "UNREAD"]).unread
        assert not parser.parse_raw(raw, "m", "t", label_ids=["INBOX"]).unread

    def test_empty_input(self, parser):
        with pytest.raises(MimeError):
            parser.parse_raw(b"", message_id="m", thread_id="t")


class TestHeaderHelpers:
    def test_address_list_with_quoted_comma(self):
        addresses = parse_address_list('"Doe, Jane" <Jane@Example.com>, bob@example.com')
        assert [(a.email, a.name) for a in addresses] == [
            ("jane@example.com", "Doe, Jane"),
            ("bob@example.com", None),
        ]

    def test_address_list_drops_garbage(self):
        assert parse_address_list("undisclosed-recipients:;") == []

    def test_header_date(self):
        parsed = parse_header_date("Wed, 01 May 2024 09:30:00 +0000")
        assert parsed == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    def test_bad_header_date(self):
        assert parse_header_date("yesterday") is None

    def test_snippet_from_html(self):
        assert make_snippet(None, "<p>Hello   <b>World</b></p>") == "Hello World"

    def test_snippet_truncated(self):
        assert len(make_snippet("x " * 500, None)) == 200


class TestGmailMetadata:
    def test_parse(self, parser):
        message = parser.parse_gmail_metadata(GmailFactory.metadata("m1", ["INBOX", "UNREAD"]))

        assert message.id == "m1"
        assert message.thread_id == "thread-m1"
        assert message.sender.email == "alice@example.com"
        assert message.subject == "Hello"
        assert message.unread
        assert message.date == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        assert message.body_html is None

    def test_attachment_detection_ignores_related(self):
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/related",
                    "parts": [{"mimeType": "image/png", "filename": "logo.png"}],
                }
            ],
        }
        assert not gmail_payload_has_attachments(payload)

        payload["parts"].append({"mimeType": "application/pdf", "filename": "quote.pdf"})
        assert gmail_payload_has_attachments(payload)


class TestGraphMessage:
    def test_parse_list_view(self, parser):
        message = parser.parse_graph_message(GraphFactory.message("g1", is_read=False))

        assert message.id == "g1"
        assert message.thread_id == "conv-g1"
        assert message.label_ids == ["inbox-id"]
        assert message.unread
        assert message.sender.email == "alice@example.com"
        assert message.body_html is None

    def test_parse_full_html(self, parser):
        data = GraphFactory.message("g1", body_html="<p>Hi <b>there</b></p>")
        message = parser.parse_graph_message(data, full=True)

        assert message.body_html == "<p>Hi <b>there</b></p>"
        assert "there" in message.body_text

    def test_inline_attachment_skipped(self):
        assert graph_attachment_ref({"id": "a", "name": "logo.png", "isInline": True}) is None
        ref = graph_attachment_ref({"id": "a", "name": "q.pdf", "contentType": "application/pdf", "size": 10})
        assert ref.size == 10


class TestListHelpers:
    def _message(self, message_id, thread_id, day):
        return Message(
            id=message_id,
            thread_id=thread_id,
            date=datetime(2024, 5, day, tzinfo=timezone.utc),
        )

    def test_sort_newest_first(self):
        messages = [self._message("a", "t", 1), self._message("b", "t", 3), self._message("c", "t", 2)]
        assert [m.id for m in sort_newest_first(messages)] == ["b", "c", "a"]

    def test_undated_messages_last(self):
        undated = Message(id="x", thread_id="t")
        messages = sort_newest_first([undated, self._message("a", "t", 1)])
        assert [m.id for m in messages] == ["a", "x"]

    def test_collapse_threads(self):
        messages = [
            self._message("a", "t1", 3),
            self._message("b", "t2", 2),
            self._message("c", "t1", 1),
        ]
        collapsed = collapse_threads(messages)

        assert [(m.id, m.messages_in_thread) for m in collapsed] == [("a", 2), ("b", 1)]

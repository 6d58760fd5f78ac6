"""Tests for email rendering and the email channel sender."""

from datetime import UTC, datetime

import pytest

from nutriplan.core.config import Settings
from nutriplan.core.exceptions import RecipientUnknownError, SendError
from nutriplan.models.notification import Notification, NotificationType
from nutriplan.services.notifications.email import (
    EmailChannelSender,
    EmailTemplates,
    EmailTransport,
    LoggingTransport,
    SmtpTransport,
    create_email_transport,
    html_to_text,
)

NOW = datetime(2030, 5, 17, 14, 30, tzinfo=UTC)


def make_notification(type: NotificationType, **fields) -> Notification:  # noqa: A002
    return Notification(
        id="n1",
        user_id=fields.pop("user_id", "user-1"),
        type=type,
        title=fields.pop("title", "Subject line"),
        message=fields.pop("message", "First paragraph\nSecond paragraph"),
        scheduled_for=NOW,
        expires_at=NOW,
        created_at=NOW,
        updated_at=NOW,
        **fields,
    )


class RejectingTransport(EmailTransport):
    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> None:
        raise OSError("connection reset")


class TestEmailTemplates:
    def test_password_reset_links_to_client(self):
        templates = EmailTemplates("https://app.example.com/")
        notification = make_notification(
            NotificationType.PASSWORD_RESET, data={"reset_token": "tok123"}
        )

        email = templates.render(notification, {"name": "Ana"})

        assert "https://app.example.com/reset-password?token=tok123" in email.html
        assert "Hello, Ana!" in email.html
        assert email.subject == "Subject line"

    def test_consultation_date_is_split(self):
        notification = make_notification(
            NotificationType.CONSULTATION_REMINDER,
            data={"consultation_date": NOW.isoformat(), "nutritionist_name": "Dr. Silva"},
        )

        email = EmailTemplates().render(notification, {"name": "Ana"})

        assert "17/05/2030" in email.text
        assert "14:30" in email.text
        assert "Dr. Silva" in email.text

    def test_generic_template_uses_message_paragraphs(self):
        notification = make_notification(NotificationType.SYSTEM_ANNOUNCEMENT)

        email = EmailTemplates().render(notification, {})

        assert "<p>First paragraph</p>" in email.html
        assert "<p>Second paragraph</p>" in email.html
        assert "Hello, there!" in email.html

    def test_values_are_escaped(self):
        notification = make_notification(
            NotificationType.SYSTEM_ANNOUNCEMENT, message="<script>alert(1)</script>"
        )

        email = EmailTemplates().render(notification, {"name": "Ana"})

        assert "<script>" not in email.html
        assert "&lt;script&gt;" in email.html


class TestHtmlToText:
    def test_strips_tags_and_styles(self):
        markup = "<html><head><style>p { color: red; }</style></head><body><p>Hi &amp; bye</p></body></html>"

        assert html_to_text(markup) == "Hi & bye"


class TestEmailChannelSender:
    @pytest.mark.asyncio
    async def test_sends_to_recipient_email(self, store):
        await store.create("users", {"name": "Ana", "email": "ana@example.com"}, document_id="user-1")
        transport = LoggingTransport()
        sender = EmailChannelSender(store, transport, EmailTemplates())

        await sender.send(make_notification(NotificationType.WELCOME))

        assert transport.sent == [("ana@example.com", "Subject line")]

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, store):
        sender = EmailChannelSender(store, LoggingTransport(), EmailTemplates())

        with pytest.raises(RecipientUnknownError):
            await sender.send(make_notification(NotificationType.WELCOME, user_id="ghost"))

    @pytest.mark.asyncio
    async def test_recipient_without_email(self, store):
        await store.create("users", {"name": "Ana"}, document_id="user-1")
        sender = EmailChannelSender(store, LoggingTransport(), EmailTemplates())

        with pytest.raises(RecipientUnknownError):
            await sender.send(make_notification(NotificationType.WELCOME))

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_send_error(self, store):
        await store.create("users", {"name": "Ana", "email": "ana@example.com"}, document_id="user-1")
        sender = EmailChannelSender(store, RejectingTransport(), EmailTemplates())

        with pytest.raises(SendError, match="connection reset") as exc_info:
            await sender.send(make_notification(NotificationType.WELCOME))

        assert exc_info.value.retryable


class TestTransportFactory:
    def test_logging_transport_without_smtp_host(self):
        assert isinstance(create_email_transport(Settings(environment="testing")), LoggingTransport)

    def test_smtp_transport_from_settings(self):
        settings = Settings(environment="testing", smtp_host="smtp.example.com", smtp_port=2525)

        transport = create_email_transport(settings)

        assert isinstance(transport, SmtpTransport)
        assert transport.port == 2525

    def test_message_has_text_and_html_parts(self):
        transport = SmtpTransport("smtp.example.com", from_email="noreply@example.com")

        message = transport._build_message("ana@example.com", "Hi", "<p>Hi</p>", "Hi")

        assert message["To"] == "ana@example.com"
        assert [part.get_content_type() for part in message.get_payload()] == [
            "text/plain",
            "text/html",
        ]

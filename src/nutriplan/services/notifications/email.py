"""Email channel: templates, SMTP transport and the channel sender."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
import html
import logging
import re
from typing import Any

import aiosmtplib
from jinja2 import DictLoader, Environment, select_autoescape

from nutriplan.core.config import Settings
from nutriplan.core.exceptions import RecipientUnknownError, SendError
from nutriplan.models.notification import Notification, NotificationType
from nutriplan.ports.storage import IDocumentStore

logger = logging.getLogger(__name__)

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <style>
    .container { max-width: 600px; margin: 0 auto; font-family: Arial, sans-serif; }
    .header { background-color: {% block color %}#607D8B{% endblock %}; color: white; padding: 20px; text-align: center; }
    .content { padding: 20px; }
    .highlight { background-color: #F5F5F5; padding: 15px; margin: 10px 0; }
    .button { background-color: #4CAF50; color: white; padding: 12px 24px; text-decoration: none; }
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{% block heading %}{{ title }}{% endblock %}</h1></div>
    <div class="content">
      <h2>Hello, {{ name }}!</h2>
      {% block body %}{% endblock %}
      <p>Best regards,<br>The NutriPlan team</p>
    </div>
  </div>
</body>
</html>
"""

TEMPLATES: dict[str, str] = {
    "layout.html": _LAYOUT,
    "welcome.html": """{% extends "layout.html" %}
{% block color %}#4CAF50{% endblock %}
{% block heading %}Welcome to NutriPlan{% endblock %}
{% block body %}
<p>Your account has been created.</p>
<p>From now on you can follow your consultations, diet plans and assessments online.</p>
<p><a class="button" href="{{ client_url }}/login">Sign in</a></p>
{% endblock %}""",
    "consultation_reminder.html": """{% extends "layout.html" %}
{% block color %}#FF9800{% endblock %}
{% block heading %}Consultation reminder{% endblock %}
{% block body %}
<p>This is a reminder of your upcoming consultation:</p>
<div class="highlight">
  <p><strong>Date:</strong> {{ consultation_date }}</p>
  <p><strong>Time:</strong> {{ consultation_time }}</p>
  <p><strong>Nutritionist:</strong> {{ nutritionist_name or "To be defined" }}</p>
</div>
<p>If you need to reschedule or cancel, please get in touch.</p>
{% endblock %}""",
    "consultation_scheduled.html": """{% extends "layout.html" %}
{% block color %}#2196F3{% endblock %}
{% block heading %}Consultation scheduled{% endblock %}
{% block body %}
<p>Your consultation has been scheduled:</p>
<div class="highlight">
  <p><strong>Date:</strong> {{ consultation_date }}</p>
  <p><strong>Time:</strong> {{ consultation_time }}</p>
  <p><strong>Nutritionist:</strong> {{ nutritionist_name or "To be defined" }}</p>
</div>
{% endblock %}""",
    "diet_plan_created.html": """{% extends "layout.html" %}
{% block color %}#8BC34A{% endblock %}
{% block heading %}Your new diet plan is ready{% endblock %}
{% block body %}
<p>{{ nutritionist_name or "Your nutritionist" }} created the plan <strong>{{ plan_title or title }}</strong> for you.</p>
<p><a class="button" href="{{ client_url }}/dashboard">View plan</a></p>
{% endblock %}""",
    "password_reset.html": """{% extends "layout.html" %}
{% block color %}#F44336{% endblock %}
{% block heading %}Password reset{% endblock %}
{% block body %}
<p>We received a request to reset your password.</p>
<p><strong>Important:</strong> if you did not make this request, ignore this email.</p>
<p><a class="button" href="{{ reset_link }}">Reset password</a></p>
<p>This link is valid for 1 hour and can only be used once.</p>
{% endblock %}""",
    "generic.html": """{% extends "layout.html" %}
{% block body %}
{% for paragraph in paragraphs %}<p>{{ paragraph }}</p>
{% endfor %}
{% endblock %}""",
}

_TEMPLATE_FOR_TYPE = {
    NotificationType.WELCOME: "welcome.html",
    NotificationType.CONSULTATION_REMINDER: "consultation_reminder.html",
    NotificationType.CONSULTATION_SCHEDULED: "consultation_scheduled.html",
    NotificationType.DIET_PLAN_CREATED: "diet_plan_created.html",
    NotificationType.PASSWORD_RESET: "password_reset.html",
}

_TAG_RE = re.compile(r"<[^>]+>")
_STYLE_RE = re.compile(r"<(style|head)[^>]*>.*?</\1>", re.DOTALL | re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def html_to_text(markup: str) -> str:
    """Plain-text alternative derived by stripping tags."""
    text = _STYLE_RE.sub("", markup)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


class EmailTemplates:
    """Render notification emails with jinja2."""

    def __init__(self, client_url: str = "http://localhost:3000") -> None:
        self.client_url = client_url.rstrip("/")
        self.env = Environment(
            loader=DictLoader(TEMPLATES),
            autoescape=select_autoescape(default=True),
        )

    @staticmethod
    def _split_datetime(value: Any) -> tuple[str, str]:
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                return value, ""
        if isinstance(value, datetime):
            return value.strftime("%d/%m/%Y"), value.strftime("%H:%M")
        return "", ""

    def render(self, notification: Notification, recipient: dict[str, Any]) -> RenderedEmail:
        data = notification.data or {}
        template_name = _TEMPLATE_FOR_TYPE.get(notification.type, "generic.html")
        consultation_date, consultation_time = self._split_datetime(
            data.get("consultation_date")
        )
        reset_token = data.get("reset_token")
        context = {
            **data,
            "name": recipient.get("name") or "there",
            "title": notification.title,
            "paragraphs": [part for part in notification.message.split("\n") if part.strip()],
            "client_url": self.client_url,
            "consultation_date": consultation_date,
            "consultation_time": consultation_time,
            "reset_link": (
                f"{self.client_url}/reset-password?token={reset_token}"
                if reset_token
                else self.client_url
            ),
        }
        rendered = self.env.get_template(template_name).render(**context)
        return RenderedEmail(
            subject=notification.title,
            html=rendered,
            text=html_to_text(rendered),
        )


class EmailTransport(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> None:
        pass

    async def test_connection(self) -> bool:
        return True


class LoggingTransport(EmailTransport):
    """Development transport that logs instead of sending."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> None:
        self.sent.append((to, subject))
        logger.info("SMTP not configured, email to %s logged: %s", to, subject)


class SmtpTransport(EmailTransport):
    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: str = "",
        password: str = "",
        use_tls: bool = False,
        from_email: str = "noreply@nutrition-app.com",
        timeout: float = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpTransport":
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_pass,
            use_tls=settings.smtp_secure,
            from_email=settings.from_email,
        )

    def _build_message(
        self, to: str, subject: str, html_body: str, text_body: str
    ) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = f"NutriPlan <{self.from_email}>"
        message["To"] = to
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    async def send(self, to: str, subject: str, html_body: str, text_body: str) -> None:
        message = self._build_message(to, subject, html_body, text_body)
        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            use_tls=self.use_tls,
            start_tls=None if self.use_tls else self.port == 587,
            timeout=self.timeout,
        )
        logger.info("Email sent to %s: %s", to, subject)

    async def test_connection(self) -> bool:
        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            use_tls=self.use_tls,
            timeout=self.timeout,
        )
        try:
            await smtp.connect()
            if self.username and self.password:
                await smtp.login(self.username, self.password)
            await smtp.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("SMTP connection test failed: %s", e)
            return False
        return True


def create_email_transport(settings: Settings) -> EmailTransport:
    if settings.smtp_configured():
        return SmtpTransport.from_settings(settings)
    logger.info("SMTP_HOST not set, emails will only be logged")
    return LoggingTransport()


class EmailChannelSender:
    """Deliver a notification by email to its user."""

    def __init__(
        self,
        store: IDocumentStore,
        transport: EmailTransport,
        templates: EmailTemplates,
    ) -> None:
        self.store = store
        self.transport = transport
        self.templates = templates

    async def send(self, notification: Notification) -> None:
        """Render and send.

        Raises:
            RecipientUnknownError: The user is gone or has no email.
            SendError: The transport failed.
        """
        recipient = await self.store.get("users", notification.user_id)
        if not recipient or not recipient.get("email"):
            raise RecipientUnknownError(notification.user_id)

        email = self.templates.render(notification, recipient)
        try:
            await self.transport.send(recipient["email"], email.subject, email.html, email.text)
        except Exception as e:
            raise SendError(str(e)) from e

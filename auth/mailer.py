"""
auth/mailer.py -- Outbound email delivery.

The engine treats mail as a fire-and-forget notifier: AuthService calls
Mailer.send() and logs, but never propagates, a delivery failure. A user whose
email never arrives uses the resend action.

Implementations:
  SmtpMailer -- stdlib smtplib + EmailMessage (STARTTLS when SMTP_USE_TLS).
  LogMailer  -- logs recipient and subject only. Selected automatically when
                SMTP_HOST is empty so local development needs no mail server.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

logger = logging.getLogger("sessiongate.auth.mail")

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def render_verification_email(email: str, url: str) -> str:
    """Render the HTML body of the account verification email."""
    return _templates.get_template("verification_email.html").render(email=email, url=url)


class Mailer:
    """Interface: deliver one HTML message to one recipient."""

    def send(self, to: str, subject: str, html: str) -> None:
        raise NotImplementedError


class LogMailer(Mailer):
    def send(self, to: str, subject: str, html: str) -> None:
        # Body carries a live verification link -- keep it out of the logs.
        logger.info("Mail to %s: %s (SMTP not configured, message not sent)", to, subject)


class SmtpMailer(Mailer):
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "onboarding@sessiongate.local",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("Open this message in an HTML-capable mail client to verify your account.")
        message.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(message)
        logger.info("Mail sent to %s: %s", to, subject)


def build_mailer(settings) -> Mailer:
    """Pick the mailer for the given Settings."""
    if not settings.smtp_host:
        return LogMailer()
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        sender=settings.mail_from,
    )

"""
Email notifications for admin management.

Delivery is best effort: `notify` reports success as a bool and never raises,
so a mail outage cannot undo an admin change that has already been committed.
"""
import asyncio
import html as html_lib
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Protocol

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)


ADMIN_CREDENTIALS = "ADMIN_CREDENTIALS"


class Notifier(Protocol):
    async def notify(self, address: str, template: str, payload: dict[str, Any]) -> bool: ...


def render(template: str, payload: dict[str, Any]) -> tuple[str, str, str]:
    """Return (subject, text body, html body) for a template."""
    if template == ADMIN_CREDENTIALS:
        role = "Primary Admin" if payload.get("admin_role") == "primary_admin" else "Secondary Admin"
        subject = f"Your admin account for {payload['organization']}"
        text = (
            f"Hello {payload['name']},\n\n"
            f"You have been added as {role} of {payload['organization']}.\n\n"
            f"Email: {payload['email']}\n"
            f"Password: {payload['password']}\n\n"
            "Please change your password after your first login.\n"
        )
        safe = {key: html_lib.escape(str(payload[key])) for key in ("name", "organization", "email", "password")}
        html = (
            f"<p>Hello {safe['name']},</p>"
            f"<p>You have been added as <strong>{role}</strong> of {safe['organization']}.</p>"
            f"<p>Email: {safe['email']}<br>Password: <code>{safe['password']}</code></p>"
            "<p>Please change your password after your first login.</p>"
        )
        return subject, text, html
    raise ValueError(f"Email template not found for type: {template}")


class EmailNotifier:
    """SMTP notifier; the blocking client runs in a worker thread."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        sender: str | None = None,
    ):
        self.host = host or config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.username = username or config.SMTP_USER
        self.password = password or config.SMTP_PASSWORD
        self.sender = sender or config.MAIL_FROM

    async def notify(self, address: str, template: str, payload: dict[str, Any]) -> bool:
        if not self.host:
            log.warning(f"SMTP not configured, skipping {template} email to {address}")
            return False
        try:
            subject, text, html = render(template, payload)
            await asyncio.to_thread(self._send, address, subject, text, html)
        except (smtplib.SMTPException, OSError, ValueError, KeyError) as e:
            log.warning(f"Failed to send {template} email to {address}: {e}")
            return False
        log.info(f"Sent {template} email to {address}")
        return True

    def _send(self, address: str, subject: str, text: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = address
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        with smtplib.SMTP_SSL(self.host, self.port) as server:
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

"""SMTP mailer for notification e-mails."""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from html import escape

from app.config import Settings, settings

logger = logging.getLogger(__name__)


class MailerNotConfiguredError(RuntimeError):
    """SMTP host or credentials are missing."""


class SmtpMailer:
    """Sends HTML e-mail through the configured SMTP server."""

    def __init__(self, config: Settings = settings) -> None:
        self.config = config

    @property
    def configured(self) -> bool:
        return self.config.smtp_configured

    def build_message(self, to: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.config.mail_from
        message["To"] = to
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=20) as server:
            if self.config.smtp_use_tls:
                server.starttls()
            server.login(self.config.smtp_username, self.config.smtp_password)
            server.send_message(message)

    async def send(self, to: str, subject: str, html: str) -> None:
        """Send one e-mail. smtplib blocks, so it runs in a worker thread."""
        if not self.configured:
            raise MailerNotConfiguredError("SMTP is not configured")
        message = self.build_message(to, subject, html)
        await asyncio.to_thread(self._send_sync, message)
        logger.info("Sent e-mail %r to %s", subject, to)


def render_notification_html(title: str, message: str, app_name: str = settings.app_name) -> str:
    """Default HTML body for notifications that do not bring their own."""
    return f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
          <h2 style="color: #235FE3;">{escape(title)}</h2>
          <p>{escape(message)}</p>
          <hr style="margin: 32px 0; border: 0; border-top: 1px solid #ddd;" />
          <p style="text-align: center; font-size: 12px; color: #666;">{escape(app_name)}</p>
        </div>
    """.strip()


mailer = SmtpMailer()

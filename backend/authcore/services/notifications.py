"""Delivery of single-use tokens by email."""
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import html
import logging
import re
import smtplib
from typing import Protocol
from urllib.parse import quote

from authcore.config import Settings
from authcore.services.signer import PASSWORD_RESET, VERIFICATION

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def send(self, token_type: str, recipient_email: str, token: str, display_name: str | None) -> bool: ...


def build_link(base_url: str, token_type: str, token: str) -> str:
    path = "verify-email" if token_type == VERIFICATION else "reset-password"
    return f"{base_url.rstrip('/')}/{path}?token={quote(token, safe='')}"


def generate_token_email_html(token_type: str, link: str, display_name: str | None, app_name: str) -> tuple[str, str]:
    """Subject and HTML body for a single-use token email."""
    greeting = html.escape(display_name) if display_name else "there"
    if token_type == VERIFICATION:
        subject = f"{app_name}: verify your email address"
        intro = "Please confirm your email address to finish setting up your account."
        action = "Verify email"
    elif token_type == PASSWORD_RESET:
        subject = f"{app_name}: reset your password"
        intro = "We received a request to reset your password. If this wasn't you, you can ignore this email."
        action = "Reset password"
    else:
        raise ValueError(f"No email template for token type: {token_type}")

    body = f"""
    <html>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <p>Hi {greeting},</p>
        <p>{intro}</p>
        <p><a href="{html.escape(link)}" style="padding: 10px 16px; background: #1e40af; color: #ffffff; border-radius: 6px; text-decoration: none;">{action}</a></p>
        <p style="margin-top: 24px; padding-top: 16px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 12px;">
            This link can only be used once and expires soon.
        </p>
    </body>
    </html>
    """
    return subject, body


class SmtpNotificationSender:
    """Send token emails over SMTP; logs and skips when SMTP is not configured."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def send(self, token_type: str, recipient_email: str, token: str, display_name: str | None) -> bool:
        link = build_link(self.settings.frontend_url, token_type, token)
        subject, html_content = generate_token_email_html(
            token_type, link, display_name, self.settings.app_name
        )
        return self.send_email(recipient_email, subject, html_content)

    def send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        if not self.settings.smtp_host:
            logger.warning("SMTP not configured, skipping email")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.settings.smtp_from_email
        msg["To"] = to_email

        # Plain text fallback
        plain_text = html_content.replace("<br>", "\n").replace("</p>", "\n\n")
        plain_text = re.sub(r"<[^>]+>", "", plain_text)

        msg.attach(MIMEText(plain_text, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port) as server:
                server.starttls()
                if self.settings.smtp_user and self.settings.smtp_password:
                    server.login(self.settings.smtp_user, self.settings.smtp_password)
                server.send_message(msg)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email: {e}")
            return False

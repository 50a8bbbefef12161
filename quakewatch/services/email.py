import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from quakewatch.core.config import Settings

logger = logging.getLogger(__name__)


def _smtp_configured(settings: Settings) -> bool:
    return all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.smtp_from_email,
        ]
    )


def build_password_reset_message(settings: Settings, email: str, reset_token: str) -> MIMEMultipart:
    """Compose the reset email, linking to the frontend when one is configured."""
    expires = settings.password_reset_token_expire_minutes
    message = MIMEMultipart("alternative")
    message["Subject"] = "Password Reset Request"
    message["From"] = settings.smtp_from_email or ""
    message["To"] = email

    if settings.frontend_url:
        reset_link = f"{settings.frontend_url.rstrip('/')}/reset-password?token={reset_token}"
        text = (
            "You requested a password reset for your QuakeWatch account.\n\n"
            f"Please open the following link to reset your password:\n{reset_link}\n\n"
            f"This link will expire in {expires} minutes.\n\n"
            "If you did not request this, please ignore this email.\n"
        )
        html = (
            "<html><body>"
            "<p>You requested a password reset for your QuakeWatch account.</p>"
            f'<p><a href="{reset_link}">{reset_link}</a></p>'
            f"<p>This link will expire in {expires} minutes.</p>"
            "<p>If you did not request this, please ignore this email.</p>"
            "</body></html>"
        )
    else:
        text = (
            "You requested a password reset for your QuakeWatch account.\n\n"
            f"Your password reset token is:\n{reset_token}\n\n"
            f"This token will expire in {expires} minutes.\n\n"
            "If you did not request this, please ignore this email.\n"
        )
        html = (
            "<html><body>"
            "<p>You requested a password reset for your QuakeWatch account.</p>"
            f"<p>Your password reset token is: <code>{reset_token}</code></p>"
            f"<p>This token will expire in {expires} minutes.</p>"
            "<p>If you did not request this, please ignore this email.</p>"
            "</body></html>"
        )

    message.attach(MIMEText(text, "plain"))
    message.attach(MIMEText(html, "html"))
    return message


class PasswordResetMailer:
    """Deliver password reset tokens over SMTP."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def __call__(self, email: str, reset_token: str) -> None:
        """
        Send password reset email to user.

        Raises:
            ValueError: If SMTP is not configured.
        """
        settings = self.settings
        if not _smtp_configured(settings):
            logger.warning("SMTP not configured - cannot send password reset email")
            raise ValueError("SMTP is not configured. Please configure SMTP settings in .env file.")

        message = build_password_reset_message(settings, email, reset_token)

        send_kwargs = {
            "hostname": settings.smtp_host,
            "port": settings.smtp_port,
            "username": settings.smtp_user,
            "password": settings.smtp_password,
        }

        # Port 465 uses direct TLS, anything else STARTTLS.
        if settings.smtp_use_tls:
            if settings.smtp_port == 465:
                send_kwargs["use_tls"] = True
            else:
                send_kwargs["start_tls"] = True

        await aiosmtplib.send(message, **send_kwargs)

"""
core/mailer.py -- Outbound transactional mail (password reset links).

The mailer is a thin collaborator: given a destination address and a reset
link it sends one message over SMTP with implicit TLS. It never retries.
Callers catch MailerError, log it, and answer the client with a generic
server error.

Instances live on app.state.mailer so tests can swap in a MagicMock and
assert on calls without opening a socket.

Layer rule: core/ is the kernel. No imports from api/, auth/, or vault/.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.message import EmailMessage

from core.config import Settings

logger = logging.getLogger("nopass.mailer")


class MailerError(Exception):
    """Raised when a message cannot be handed to the SMTP server."""


class Mailer:
    def __init__(self, settings: Settings) -> None:
        self._user = settings.email_user
        self._password = settings.email_pass
        self._host = settings.smtp_host
        self._port = settings.smtp_port

    @property
    def configured(self) -> bool:
        return bool(self._user and self._password)

    def send_reset_email(self, to: str, reset_link: str) -> None:
        """Send the password reset link to `to`.

        Raises MailerError when credentials are not configured or the SMTP
        exchange fails.
        """
        if not self.configured:
            raise MailerError("Mail credentials not configured")

        msg = EmailMessage()
        msg["Subject"] = "Reset your NoPass account password"
        msg["From"] = f"NoPass Security <{self._user}>"
        msg["To"] = to
        msg.set_content(
            "You requested a password reset for your NoPass account.\n\n"
            f"Reset your password: {reset_link}\n\n"
            "This link expires in 1 hour. If you did not request this, ignore this email."
        )
        msg.add_alternative(
            "<p>You requested a password reset for your NoPass account.</p>"
            f'<p><a href="{html.escape(reset_link, quote=True)}">Reset Password</a></p>'
            "<p>This link expires in <strong>1 hour</strong>. "
            "If you did not request this, ignore this email.</p>",
            subtype="html",
        )

        try:
            with smtplib.SMTP_SSL(self._host, self._port, context=ssl.create_default_context(), timeout=10) as smtp:
                smtp.login(self._user, self._password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailerError(f"SMTP delivery failed: {exc.__class__.__name__}") from exc
        logger.info("Password reset email sent")

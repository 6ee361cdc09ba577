"""
auth/mailer.py -- Outbound login-code email.

The API depends only on the send_login_code(email, code) shape, so tests and
alternative providers can swap in any object with that method
(app.state.mailer).

SMTP is optional. When SMTP_HOST / SMTP_FROM are unset:
  DEBUG=true  -- the code is written to the log so local sign-in works.
  production  -- sending fails with UpstreamFailure; a login code that never
                 arrives must not look like success.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

from core.config import Settings
from core.errors import UpstreamFailure

logger = logging.getLogger("recordvault.mailer")


class SmtpMailer:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def send_login_code(self, email: str, code: str) -> None:
        settings = self._settings
        if not settings.smtp_configured:
            if settings.debug:
                # Development-only fallback; never reached in production.
                logger.warning("SMTP not configured. Login code for %s: %s", email, code)
                return
            raise UpstreamFailure("Email delivery is not configured.")

        msg = EmailMessage()
        msg["Subject"] = "Your sign-in code"
        msg["From"] = settings.smtp_from
        msg["To"] = email
        msg.set_content(
            f"Your sign-in code is {code}.\n\n"
            f"It expires in {settings.login_code_ttl_minutes} minutes. "
            "If you did not request it, you can ignore this email.\n"
        )

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as smtp:
                smtp.starttls()
                if settings.smtp_user:
                    smtp.login(settings.smtp_user, settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Login code delivery to %s failed: %s", email, type(exc).__name__)
            raise UpstreamFailure("Could not send the sign-in email.") from exc
        logger.info("Login code sent to %s", email)

"""
auth/mailer.py -- Outbound mail for password reset codes.

SMTP with STARTTLS or implicit TLS when SMTP_HOST and MAIL_FROM are set.
Without them (local development) the message is written to the log instead
of being sent, so a developer can complete the reset flow without a mail
server.

Addresses are redacted in every log line.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("community.mail")


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        use_tls: bool = True,
        from_email: str = "",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_email = from_email or smtp_user

    @classmethod
    def from_settings(cls, settings: Settings) -> Mailer:
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_reset_code(self, to_email: str, code: str, ttl_seconds: int) -> bool:
        minutes = max(1, ttl_seconds // 60)
        body = (
            f"Your password reset code is {code}.\n"
            f"It expires in {minutes} minute(s). If you did not ask for this, ignore this email."
        )
        return self._send(to_email, "Password reset code", body)

    def _send(self, to_email: str, subject: str, body: str) -> bool:
        """Send a plain-text message. Returns False on any SMTP failure."""
        if not self.is_configured:
            logger.info("Mail not configured; would send %r to %s: %s", subject, redact_email(to_email), body)
            return True

        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        context = ssl.create_default_context()

        try:
            if self.use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, [to_email], msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Mail to %s failed: %s", redact_email(to_email), exc)
            return False

        logger.info("Mail %r sent to %s", subject, redact_email(to_email))
        return True

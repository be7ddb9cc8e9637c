"""
core/email.py -- Transactional email over SMTP.

Sends the email-verification and password-reset messages as plain text with
a link back to the frontend. When SMTP_HOST is not configured the recipient and
subject are logged instead of sent; the body (which holds the link) is logged
only when log_body is set, which api/main.py does in development.

send failures return False and never raise: a lost email must not fail the
request that triggered it.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

logger = logging.getLogger("storefront.email")


class EmailService:
    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Storefront",
        base_url: str = "http://localhost:3000",
        log_body: bool = False,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = base_url.rstrip("/")
        self.log_body = log_body

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    @staticmethod
    def _redact(email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def send(self, to_email: str, subject: str, body: str) -> bool:
        """Send a plain-text email. Returns True on success (or dev-mode log)."""
        if not self.is_configured:
            logger.info("Email (not sent, SMTP unconfigured) to=%s subject=%r", self._redact(to_email), subject)
            # Bodies carry live verification and reset links.
            if self.log_body:
                logger.info("Email body:\n%s", body)
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.set_content(body)

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email to %s failed: %s", self._redact(to_email), exc)
            return False

        logger.info("Email sent to %s subject=%r", self._redact(to_email), subject)
        return True

    def send_verification_email(self, to_email: str, first_name: str, token: str) -> bool:
        link = f"{self.base_url}/verify-email?token={token}"
        body = (
            f"Hi {first_name},\n\n"
            "Thanks for registering. Confirm your email address by opening the link below:\n\n"
            f"{link}\n\n"
            "The link expires in 12 hours.\n"
        )
        return self.send(to_email, "Verify your email address", body)

    def send_password_reset_email(self, to_email: str, first_name: str, token: str) -> bool:
        link = f"{self.base_url}/reset-password?token={token}"
        body = (
            f"Hi {first_name},\n\n"
            "We received a request to reset your password. Open the link below to choose a new one:\n\n"
            f"{link}\n\n"
            "The link expires in 1 hour. If you did not request a reset, ignore this email.\n"
        )
        return self.send(to_email, "Reset your password", body)

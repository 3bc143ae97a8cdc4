from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Protocol

from wayfare.config import Settings
from wayfare.logging import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    """Raised when a transactional email could not be handed to the relay."""

    def __init__(self, message: str, *, recipient: str = "", reason: str = ""):
        super().__init__(message)
        self.recipient = recipient
        self.reason = reason


class NotificationSender(Protocol):
    async def send_verification_email(
        self, to: str, token: str, context: Dict[str, Any]
    ) -> None: ...

    async def send_password_reset_email(
        self, to: str, token: str, context: Dict[str, Any]
    ) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """SMTP notification sender for verification and password reset mail.

    When no SMTP host is configured the message is logged instead of sent,
    which is how development and test environments run.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Travel CRM",
        base_url: Optional[str] = None,
        reset_token_ttl_minutes: int = 60,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:3000").rstrip("/")
        self.reset_token_ttl_minutes = reset_token_ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
            base_url=settings.app_base_url,
            reset_token_ttl_minutes=settings.reset_token_ttl_minutes,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _build_message(self, to_email: str, subject: str, text_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        return msg

    def _send_email(self, to_email: str, subject: str, text_body: str) -> None:
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=redact_email(to_email),
                subject=subject,
                body_preview=text_body[:200],
            )
            return

        msg = self._build_message(to_email, subject, text_body)
        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            logger.error("email_auth_failed", host=self.smtp_host, error=str(exc))
            raise EmailDeliveryError(
                "SMTP authentication failed", recipient=to_email, reason="auth"
            ) from exc
        except smtplib.SMTPRecipientsRefused as exc:
            logger.error("email_recipient_refused", to=redact_email(to_email))
            raise EmailDeliveryError(
                "Recipient refused", recipient=to_email, reason="recipient"
            ) from exc
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "email_send_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise EmailDeliveryError(
                "Email delivery failed", recipient=to_email, reason=type(exc).__name__
            ) from exc

        logger.info("email_sent", to=redact_email(to_email), subject=subject)

    async def send_verification_email(
        self, to: str, token: str, context: Dict[str, Any]
    ) -> None:
        verify_url = f"{self.base_url}/verify-email?token={token}"
        name = context.get("first_name") or "there"
        body = (
            f"Hi {name},\n\n"
            "Please confirm your email address by visiting the link below:\n\n"
            f"{verify_url}\n\n"
            f"---\n{self.from_name}\n"
        )
        await asyncio.to_thread(self._send_email, to, "Verify your email address", body)

    async def send_password_reset_email(
        self, to: str, token: str, context: Dict[str, Any]
    ) -> None:
        reset_url = f"{self.base_url}/reset-password?token={token}"
        name = context.get("first_name") or "there"
        body = (
            f"Hi {name},\n\n"
            "We received a request to reset your password. "
            "Visit the link below to choose a new one:\n\n"
            f"{reset_url}\n\n"
            f"This link expires in {self.reset_token_ttl_minutes} minutes. "
            "If you didn't request this, you can ignore this email.\n\n"
            f"---\n{self.from_name}\n"
        )
        await asyncio.to_thread(self._send_email, to, "Reset your password", body)

"""
Out-of-band delivery of password reset codes over SMTP.
"""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Protocol

from src.config import Settings
from src.kernel.errors import UpstreamUnavailable
from src.logging_config import get_logger

logger = get_logger(__name__)


class Notifier(Protocol):
    """Delivers a reset code to a principal."""

    async def send_password_reset_code(
        self,
        to_email: str,
        code: str,
        username: str,
        expires_minutes: int,
    ) -> None:
        ...


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailNotifier:
    """
    SMTP notifier.

    The blocking smtplib exchange runs in a worker thread bounded by
    ``timeout``. Any delivery failure surfaces as UpstreamUnavailable.
    When no SMTP host is configured (development) the message is logged
    instead of sent.
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
        from_name: str = "WebTemplate",
        timeout: float = 10.0,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        return cls(
            smtp_host=settings.smtp_host or None,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user or None,
            smtp_password=settings.smtp_password or None,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.smtp_from_email,
            from_name=settings.smtp_from_name,
            timeout=settings.notifier_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    async def send_password_reset_code(
        self,
        to_email: str,
        code: str,
        username: str,
        expires_minutes: int,
    ) -> None:
        subject = f"Password Reset Code - {self.from_name}"
        html_body = f"""
<html>
<body>
    <h2>Password Reset Request</h2>
    <p>Hello {username},</p>
    <p>You have requested to reset your password. Please use the following code to reset your password:</p>
    <h1 style="color: #4CAF50; font-size: 32px; letter-spacing: 5px;">{code}</h1>
    <p>This code will expire in {expires_minutes} minutes.</p>
    <p>If you did not request this password reset, please ignore this email.</p>
</body>
</html>
"""
        text_body = (
            f"Hello {username},\n\n"
            f"Your password reset code is {code}.\n"
            f"This code will expire in {expires_minutes} minutes.\n\n"
            "If you did not request this password reset, please ignore this email.\n"
        )

        if not self.is_configured:
            logger.info(
                "SMTP not configured, reset code not sent",
                extra={"to": redact_email(to_email), "subject": subject},
            )
            logger.debug("Reset code for %s: %s", redact_email(to_email), code)
            return

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send, to_email, subject, html_body, text_body),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable("Timed out sending reset code email") from exc
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            raise UpstreamUnavailable(f"Failed to send reset code email: {type(exc).__name__}") from exc

        logger.info("Reset code email sent", extra={"to": redact_email(to_email)})

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        if self.smtp_use_tls:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, [to_email], msg.as_string())
        else:
            with smtplib.SMTP_SSL(
                self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
            ) as server:
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_email, [to_email], msg.as_string())

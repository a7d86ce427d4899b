"""
Email Notifier
--------------
Outbound transactional mail (verification and password reset links).

One instance is built at application startup and handed to the session
orchestrator. Without an SMTP host the notifier logs the message instead of
sending it, which is the development default.
"""

import asyncio
import html
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from loguru import logger

from lawcase_auth.core.config_manager import ApplicationSettings
from lawcase_auth.core.logger_setup import redact_email


class EmailNotifier:
    """SMTP mail sender with a log-only fallback."""

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: str = "noreply@lawcasebench.com",
        from_name: str = "LawCase Bench",
        frontend_url: str = "http://localhost:3000",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")

    @classmethod
    def from_settings(cls, config: ApplicationSettings) -> "EmailNotifier":
        return cls(
            smtp_host=config.smtp_host,
            smtp_port=config.smtp_port,
            smtp_user=config.smtp_user,
            smtp_password=config.smtp_password,
            smtp_use_tls=config.smtp_use_tls,
            from_email=config.smtp_from_email,
            from_name=config.app_name,
            frontend_url=config.frontend_url,
        )

    @property
    def is_configured(self) -> bool:
        """Check if email sending is properly configured."""
        return bool(self.smtp_host and self.from_email)

    async def send_verification_email(
        self, to_email: str, first_name: str, token: str, expires_in_hours: int = 24
    ) -> bool:
        verification_url = f"{self.frontend_url}/verify-email?token={token}"
        html_body = f"""
<h2>Welcome to LawCase Bench, {html.escape(first_name)}!</h2>
<p>Please verify your email address by clicking the link below:</p>
<a href="{verification_url}">Verify Email</a>
<p>This link will expire in {expires_in_hours} hours.</p>
"""
        text_body = (
            f"Welcome to LawCase Bench, {first_name}!\n\n"
            f"Verify your email address: {verification_url}\n\n"
            f"This link will expire in {expires_in_hours} hours.\n"
        )
        return await asyncio.to_thread(
            self._send_email, to_email, "Verify your email address", html_body, text_body
        )

    async def send_password_reset_email(
        self, to_email: str, first_name: str, token: str, expires_in_minutes: int = 60
    ) -> bool:
        reset_url = f"{self.frontend_url}/reset-password?token={token}"
        html_body = f"""
<h2>Password Reset Request</h2>
<p>Hello {html.escape(first_name)}, you requested a password reset for your LawCase Bench account.</p>
<p>Click the link below to reset your password:</p>
<a href="{reset_url}">Reset Password</a>
<p>This link will expire in {expires_in_minutes} minutes.</p>
<p>If you didn't request this, please ignore this email.</p>
"""
        text_body = (
            "Password Reset Request\n\n"
            f"Reset your password: {reset_url}\n\n"
            f"This link will expire in {expires_in_minutes} minutes.\n"
            "If you didn't request this, please ignore this email.\n"
        )
        return await asyncio.to_thread(
            self._send_email, to_email, "Password Reset Request", html_body, text_body
        )

    def _send_email(
        self, to_email: str, subject: str, html_body: str, text_body: str
    ) -> bool:
        """Send an email via SMTP. Returns True if sent (or logged in dev mode)."""
        if not self.is_configured:
            logger.info(
                f"SMTP not configured, email not sent: to={redact_email(to_email)} "
                f"subject={subject!r}"
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

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
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for {self.smtp_user}: {e}")
            return False
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(
                f"Failed to send email to {redact_email(to_email)}: "
                f"{type(e).__name__}: {e}"
            )
            return False

        logger.info(f"Email sent: to={redact_email(to_email)} subject={subject!r}")
        return True

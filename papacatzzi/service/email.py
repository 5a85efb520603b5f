from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional, Tuple

from papacatzzi.config import Settings
from papacatzzi.logging import get_logger

logger = get_logger(__name__)

_HTML_SHELL = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
        .code {{ font-size: 28px; letter-spacing: 6px; font-weight: 700; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #5b6470; }}
    </style>
</head>
<body>
    <div class="container">
        {content}
        <div class="footer"><p>{brand}</p></div>
    </div>
</body>
</html>
"""

# template_key -> (text body, html content); both formatted with the job data
TEMPLATES: Dict[str, Tuple[str, str]] = {
    "signup_code": (
        "Your verification code is {code}.\n\n"
        "It expires in {expires_minutes} minutes. If you did not try to sign up, "
        "you can ignore this email.\n",
        "<h1>Confirm your email</h1>"
        '<p>Your verification code is:</p><p class="code">{code}</p>'
        "<p>It expires in {expires_minutes} minutes.</p>"
        "<p>If you did not try to sign up, you can ignore this email.</p>",
    ),
    "password_reset": (
        "We received a request to reset your password. Visit the link below to "
        "choose a new one:\n\n{reset_url}\n\n"
        "This link expires in {expires_minutes} minutes. If you didn't request "
        "this, you can safely ignore this email.\n",
        "<h1>Reset your password</h1>"
        "<p>We received a request to reset your password.</p>"
        '<p style="margin: 30px 0;"><a href="{reset_url}">Choose a new password</a></p>'
        "<p>This link expires in {expires_minutes} minutes.</p>"
        "<p>If you didn't request this, you can safely ignore this email.</p>",
    ),
}


class EmailService:
    """SMTP notification sender.

    Without ``SMTP_HOST`` and a from address the service runs in dev mode and
    logs messages instead of sending them.
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
        from_name: str = "Papacatzzi",
        code_ttl_seconds: int = 300,
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.code_ttl_seconds = code_ttl_seconds
        self.timeout = timeout

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
            code_ttl_seconds=settings.signup_code_ttl_seconds,
            timeout=settings.notify_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    @staticmethod
    def _redact_email(email: str) -> str:
        """Redact an email address for logging to avoid PII leakage."""
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def send_verification_code(self, recipient: str, code: str) -> bool:
        return self.send_templated(
            recipient,
            "Your verification code",
            "signup_code",
            {"code": code, "expires_minutes": max(1, self.code_ttl_seconds // 60)},
        )

    def send_templated(
        self, recipient: str, subject: str, template_key: str, data: dict[str, Any]
    ) -> bool:
        try:
            text_template, html_template = TEMPLATES[template_key]
        except KeyError:
            raise ValueError(f"unknown email template: {template_key}") from None
        text_body = text_template.format(**data)
        html_body = _HTML_SHELL.format(
            content=html_template.format(**data), brand=self.from_name
        )
        return self._send_email(recipient, subject, html_body, text_body)

    def _send_email(
        self, to_email: str, subject: str, html_body: str, text_body: str
    ) -> bool:
        """Send one message. ``False`` for permanent refusals; transport faults raise."""
        if not self.is_configured:
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
                body_preview=text_body[:200],
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
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    self._login(server)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                host=self.smtp_host,
                error=str(e),
                smtp_status=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error("email_recipient_refused", to=self._redact_email(to_email), error=str(e))
            return False
        except smtplib.SMTPSenderRefused as e:
            logger.error("email_sender_refused", sender=self.from_email, error=str(e))
            return False

        logger.info("email_sent", to=self._redact_email(to_email), subject=subject)
        return True

    def _login(self, server: smtplib.SMTP) -> None:
        if self.smtp_user and self.smtp_password:
            server.login(self.smtp_user, self.smtp_password)

"""
auth/mailer.py -- Outbound account email (verification and password reset).

SmtpMailer is the production implementation. AccountService accepts any
object with the same two methods, so tests pass a recording fake.

Failure contract: every transport failure (SMTP protocol error, refused
connection, DNS failure, TLS failure) is raised as EmailDeliveryFailedError.
AccountService relies on that single type to roll back a registration.

build_mailer() returns None when mail is not configured. None is how the
service learns it is in degraded mode.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from urllib.parse import urlencode

from jinja2 import DictLoader, Environment, select_autoescape

from auth.errors import EmailDeliveryFailedError
from core.config import Settings

logger = logging.getLogger("summarizer.mail")

_SMTP_TIMEOUT_SECONDS = 30

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_TEMPLATES = {
    "verify.html": """\
<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #1f2937;">
  <h2 style="color: #3b82f6;">Verify your email address</h2>
  <p>Thanks for signing up for Daily Summarizer. Confirm your address to activate your account:</p>
  <p><a href="{{ link }}" style="color: #3b82f6;">Verify email</a></p>
  <p style="font-size: 12px; color: #6b7280;">This link expires in 24 hours. If you did not sign up, ignore this email.</p>
</body>
</html>
""",
    "verify.txt": """\
Verify your email address

Thanks for signing up for Daily Summarizer. Open this link to activate your account:

{{ link }}

This link expires in 24 hours. If you did not sign up, ignore this email.
""",
    "reset.html": """\
<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; color: #1f2937;">
  <h2 style="color: #3b82f6;">Reset your password</h2>
  <p>Someone asked to reset the password for your Daily Summarizer account.</p>
  <p><a href="{{ link }}" style="color: #3b82f6;">Choose a new password</a></p>
  <p style="font-size: 12px; color: #6b7280;">This link expires in 1 hour. If you did not ask for a reset, ignore this email.</p>
</body>
</html>
""",
    "reset.txt": """\
Reset your password

Someone asked to reset the password for your Daily Summarizer account. Open this link to choose a new one:

{{ link }}

This link expires in 1 hour. If you did not ask for a reset, ignore this email.
""",
}

_env = Environment(loader=DictLoader(_TEMPLATES), autoescape=select_autoescape(["html"]))


def _render(name: str, **context) -> str:
    return _env.get_template(name).render(**context)


# ---------------------------------------------------------------------------
# SMTP mailer
# ---------------------------------------------------------------------------


class SmtpMailer:
    """Send account email over SMTP using the configured credentials."""

    def __init__(self, settings: Settings) -> None:
        self._host = settings.email_host
        self._port = settings.email_port
        self._user = settings.email_user
        self._password = settings.email_password
        self._sender = settings.email_from
        self._implicit_tls = settings.email_secure
        self._app_url = settings.app_url.rstrip("/")

    def verification_link(self, token: str) -> str:
        return f"{self._app_url}/api/auth/verify-email?{urlencode({'token': token})}"

    def reset_link(self, token: str) -> str:
        return f"{self._app_url}/reset-password?{urlencode({'token': token})}"

    def send_verification_email(self, to: str, token: str) -> None:
        link = self.verification_link(token)
        self._send(
            to,
            "Verify your email address",
            _render("verify.txt", link=link),
            _render("verify.html", link=link),
        )

    def send_password_reset_email(self, to: str, token: str) -> None:
        link = self.reset_link(token)
        self._send(
            to,
            "Reset your password",
            _render("reset.txt", link=link),
            _render("reset.html", link=link),
        )

    def _send(self, to: str, subject: str, text_body: str, html_body: str) -> None:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text_body)
        message.add_alternative(html_body, subtype="html")

        try:
            if self._implicit_tls:
                smtp = smtplib.SMTP_SSL(
                    self._host, self._port, timeout=_SMTP_TIMEOUT_SECONDS, context=ssl.create_default_context()
                )
            else:
                smtp = smtplib.SMTP(self._host, self._port, timeout=_SMTP_TIMEOUT_SECONDS)
            with smtp:
                if not self._implicit_tls:
                    smtp.ehlo()
                    if smtp.has_extn("starttls"):
                        smtp.starttls(context=ssl.create_default_context())
                        smtp.ehlo()
                smtp.login(self._user, self._password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send '%s' email to %s: %s", subject, to, exc)
            raise EmailDeliveryFailedError() from exc
        logger.info("Sent '%s' email to %s", subject, to)


def build_mailer(settings: Settings) -> SmtpMailer | None:
    """Return an SmtpMailer, or None when mail is not configured (degraded mode)."""
    if not settings.mail_configured:
        logger.warning(
            "Email configuration not found -- email verification is disabled. "
            "Set EMAIL_HOST, EMAIL_USER, EMAIL_PASSWORD and EMAIL_FROM to enable it."
        )
        return None
    logger.info("Email service configured (host=%s port=%d)", settings.email_host, settings.email_port)
    return SmtpMailer(settings)

from __future__ import annotations

import html
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr

from starlette.concurrency import run_in_threadpool

from portal.core.errors import MailerError
from portal.core.logging import log
from portal.core.settings import settings
from portal.models import User
from portal.services.auth import create_verification_token

LOGO_PATH = "/images/logo-portal.png"

def verification_email_html(full_name: str, verify_url: str, logo_url: str) -> str:
    name = html.escape(full_name)
    url = html.escape(verify_url, quote=True)
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:500px;margin:0 auto;padding:24px;background:#f9f9f9;border-radius:8px;">
      <div style="text-align:center;">
        <img src="{html.escape(logo_url, quote=True)}" alt="{html.escape(settings.mail_from_name)}" style="max-width:150px;margin-bottom:24px;" />
      </div>
      <h2 style="color:#0b203a;text-align:center;">Welcome to {html.escape(settings.mail_from_name)}!</h2>
      <p style="font-size:1.1em;color:#333;text-align:center;">
        Hi {name}! To activate your account, click the button below to verify your email address:
      </p>
      <div style="text-align:center;margin:32px 0;">
        <a href="{url}" style="background:#fca311;color:#fff;text-decoration:none;padding:14px 32px;border-radius:6px;font-size:1.1em;display:inline-block;">
          Verify email
        </a>
      </div>
      <p style="color:#555;text-align:center;">
        If the button does not work, copy this link into your browser:<br>
        <a href="{url}" style="color:#0b203a;">{url}</a>
      </p>
      <hr style="margin:32px 0;">
      <p style="font-size:0.95em;color:#888;text-align:center;">
        If you did not create an account, ignore this email.
      </p>
    </div>
    """

class Mailer:
    """Sends transactional mail through the configured SMTP relay."""

    def _deliver(self, message: EmailMessage) -> None:
        if settings.smtp_use_ssl:
            smtp = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, context=ssl.create_default_context(), timeout=30)
        else:
            smtp = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30)
        with smtp:
            if not settings.smtp_use_ssl:
                smtp.starttls(context=ssl.create_default_context())
            if settings.smtp_user and settings.smtp_password:
                smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.send_message(message)

    async def send(self, to: str, subject: str, html_body: str) -> None:
        message = EmailMessage()
        message["From"] = formataddr((settings.mail_from_name, settings.smtp_user or "no-reply@localhost"))
        message["To"] = to
        message["Subject"] = subject
        message.set_content("Open this message in an HTML capable mail client.")
        message.add_alternative(html_body, subtype="html")
        log.info("sending '%s' to %s", subject, to)
        try:
            await run_in_threadpool(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailerError(f"delivery to {to} failed: {exc}") from exc

    async def send_verification_email(self, user: User) -> None:
        token = create_verification_token(str(user.id), user.email)
        base = settings.frontend_url.rstrip("/")
        verify_url = f"{base}/profile/verification?token={token}"
        body = verification_email_html(user.full_name, verify_url, f"{base}{LOGO_PATH}")
        await self.send(user.email, f"Verify your email - {settings.mail_from_name}", body)

_mailer: Mailer | None = None

def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer()
    return _mailer

"""
Email Delivery

Sends transactional email through an ordered list of providers. The
dispatcher tries each configured provider in priority order and reports
success on the first delivery; it reports failure only when every provider
failed. Each attempt is bounded by MAIL_TIMEOUT_SECONDS so a stalled provider
cannot block the caller.

Providers:
- resend: Resend HTTP API (RESEND_API_KEY)
- smtp: any SMTP relay (SMTP_HOST / SMTP_USER / SMTP_PASSWORD)
- console: development only, logs the message instead of sending
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from functools import lru_cache
from html import escape
from typing import Protocol

import resend

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    """Raised by a transport when a message could not be handed off."""


class MailTransport(Protocol):
    """A single delivery backend."""

    name: str

    async def send(self, to_email: str, subject: str, html_content: str) -> None: ...


class ResendTransport:
    """Deliver through the Resend API."""

    name = "resend"

    def __init__(self, api_key: str, sender: str, timeout: float):
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout

    async def send(self, to_email: str, subject: str, html_content: str) -> None:
        resend.api_key = self._api_key
        params: resend.Emails.SendParams = {
            "from": self._sender,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        try:
            # Run sync Resend call in thread pool to avoid blocking event loop
            email = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, params),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise MailDeliveryError(f"resend timed out after {self._timeout}s") from e
        except Exception as e:
            raise MailDeliveryError(f"resend rejected message: {e}") from e
        logger.debug(f"Resend accepted message id={email.get('id') if email else None}")


class SmtpTransport:
    """Deliver through an SMTP relay (implicit TLS or STARTTLS)."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_email: str,
        from_name: str,
        use_ssl: bool,
        timeout: float,
    ):
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from_email = from_email or user
        self._from_name = from_name
        self._use_ssl = use_ssl
        self._timeout = timeout

    def _build_message(self, to_email: str, subject: str, html_content: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self._from_name, self._from_email))
        msg["To"] = to_email
        msg.attach(MIMEText(html_content, "html", "utf-8"))
        return msg

    def _send_sync(self, to_email: str, subject: str, html_content: str) -> None:
        msg = self._build_message(to_email, subject, html_content)
        if self._use_ssl:
            server: smtplib.SMTP = smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        else:
            server = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        with server:
            if not self._use_ssl:
                server.starttls()
            server.login(self._user, self._password)
            server.sendmail(self._from_email, [to_email], msg.as_string())

    async def send(self, to_email: str, subject: str, html_content: str) -> None:
        try:
            await asyncio.to_thread(self._send_sync, to_email, subject, html_content)
        except smtplib.SMTPAuthenticationError as e:
            raise MailDeliveryError(f"smtp login failed: {e}") from e
        except (OSError, TimeoutError, smtplib.SMTPException) as e:
            raise MailDeliveryError(f"smtp error (timeout or network): {e}") from e


class ConsoleTransport:
    """
    Development stand-in: log the message instead of sending it.

    The body, verification code included, is logged at debug level so local
    flows can be completed. Only built when PYTHON_ENV is development.
    """

    name = "console"

    async def send(self, to_email: str, subject: str, html_content: str) -> None:
        logger.warning("No mail provider configured - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        logger.debug(f"EMAIL BODY: {html_content}")


class MailDispatcher:
    """Try each transport in order; first success wins."""

    def __init__(self, transports: list[MailTransport]):
        self._transports = list(transports)

    @property
    def provider_names(self) -> list[str]:
        return [transport.name for transport in self._transports]

    async def send(self, to_email: str, subject: str, html_content: str) -> bool:
        """
        Deliver a message.

        Returns:
            True if any provider accepted the message, False if all failed
        """
        if not self._transports:
            logger.warning(f"No mail provider configured; cannot send to {to_email}")
            return False

        for transport in self._transports:
            try:
                await transport.send(to_email, subject, html_content)
            except Exception as e:
                logger.warning(f"Mail provider '{transport.name}' failed for {to_email}: {e}")
                continue
            logger.info(f"Email sent to {to_email} via {transport.name}")
            return True

        logger.error(f"All mail providers failed for {to_email}: {self.provider_names}")
        return False


def build_mail_dispatcher(config: Settings) -> MailDispatcher:
    """Assemble transports from settings in MAIL_PROVIDERS order, skipping unconfigured ones."""
    transports: list[MailTransport] = []
    for name in config.mail_provider_order:
        if name == "resend":
            if config.resend_api_key:
                transports.append(
                    ResendTransport(
                        api_key=config.resend_api_key,
                        sender=config.email_from,
                        timeout=config.mail_timeout_seconds,
                    )
                )
            else:
                logger.warning("RESEND_API_KEY not set - resend provider disabled")
        elif name == "smtp":
            if config.smtp_host and config.smtp_user:
                transports.append(
                    SmtpTransport(
                        host=config.smtp_host,
                        port=config.smtp_port,
                        user=config.smtp_user,
                        password=config.smtp_password,
                        from_email=config.smtp_from_email,
                        from_name=config.mail_from_name,
                        use_ssl=config.smtp_use_ssl,
                        timeout=config.mail_timeout_seconds,
                    )
                )
            else:
                logger.warning("SMTP not configured (SMTP_HOST/SMTP_USER) - smtp provider disabled")
        else:
            logger.warning(f"Unknown mail provider '{name}' in MAIL_PROVIDERS, ignoring")

    if not transports and config.is_development:
        transports.append(ConsoleTransport())

    return MailDispatcher(transports)


@lru_cache
def get_mail_dispatcher() -> MailDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    return build_mail_dispatcher(settings)


# ============================================
# Templates
# ============================================

SCENE_TITLES = {
    "register": "Email Verification",
    "reset_password": "Password Reset",
}


def render_verification_code_email(code: str, scene: str, expire_minutes: int) -> tuple[str, str]:
    """
    Build the verification code email.

    Returns:
        Tuple of (subject, html_content)
    """
    title = escape(SCENE_TITLES.get(scene, "Verification"))
    safe_code = escape(code)

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
        <style>
            body {{ font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
            .header {{ color: #4c51bf; margin-bottom: 24px; }}
            .code-box {{ background: #ffffff; padding: 20px; margin: 24px 0; text-align: center; border: 2px solid #667eea; border-radius: 8px; }}
            .code {{ font-size: 32px; font-weight: bold; color: #667eea; letter-spacing: 8px; }}
            .footer {{ margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>

            <p>Hello,</p>

            <p>Use the code below to continue. Your verification code is:</p>

            <div class="code-box"><div class="code">{safe_code}</div></div>

            <p><strong>This code expires in {expire_minutes} minutes.</strong></p>
            <p>Never share this code with anyone.</p>

            <div class="footer">
                <p>If you didn't request this, you can safely ignore this email.</p>
                <p>Student System - this message was sent automatically, please do not reply.</p>
            </div>
        </div>
    </body>
    </html>
    """
    return f"[Student System] {title} code", html_content

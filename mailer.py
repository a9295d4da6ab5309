"""
SMTP mailer

Sends single HTML emails. A failed send raises MailError so callers can roll
back whatever they persisted before the send.
"""
import logging
from email.message import EmailMessage
from typing import Optional

import aiosmtplib

import config

logger = logging.getLogger(__name__)


class MailError(Exception):
    """Raised when an email could not be handed to the SMTP server"""
    pass


class Mailer:
    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        use_tls: Optional[bool] = None,
        suppress_send: Optional[bool] = None,
        timeout: float = 10.0,
    ):
        self.host = host if host is not None else config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.username = username if username is not None else config.SMTP_USERNAME
        self.password = password if password is not None else config.SMTP_PASSWORD
        self.from_email = from_email or config.SMTP_FROM_EMAIL
        self.from_name = from_name or config.SMTP_FROM_NAME
        self.use_tls = config.SMTP_USE_TLS if use_tls is None else use_tls
        self.suppress_send = config.SMTP_SUPPRESS_SEND if suppress_send is None else suppress_send
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def build_message(self, to_email: str, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f"{self.from_name} <{self.from_email}>" if self.from_name else self.from_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    async def send(self, to_email: str, subject: str, html: str) -> None:
        if not self.enabled:
            if self.suppress_send:
                logger.warning("SMTP not configured, email '%s' to %s not delivered", subject, to_email)
                return
            logger.error("SMTP not configured, cannot send '%s' to %s", subject, to_email)
            raise MailError("SMTP is not configured")

        message = self.build_message(to_email, subject, html)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Email '%s' to %s failed: %s", subject, to_email, e)
            raise MailError(f"Failed to send email to {to_email}") from e
        logger.info("Email '%s' sent to %s", subject, to_email)

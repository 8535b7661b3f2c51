"""
Notification senders for letter delivery.
The dispatcher only sees NotificationSender; SMTP is one implementation.
"""

import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid

from . import config
from util.logging import logger


@dataclass
class OutboundMessage:
    recipient: str
    subject: str
    body: str
    dedup_key: str  # stable per letter so a transport can drop duplicate sends


class NotificationSender(ABC):
    """Abstract transport for outbound letters."""

    @abstractmethod
    def send(self, message: OutboundMessage) -> bool:
        """Deliver one message. Return True on success; False or an exception means failure."""
        pass


class NullSender(NotificationSender):
    """Logs and reports failure. Used when no transport is configured."""

    def send(self, message: OutboundMessage) -> bool:
        logger.warning(f"No notification transport configured; letter {message.dedup_key} not sent")
        return False


class SmtpSender(NotificationSender):
    """SMTP transport using STARTTLS, or implicit TLS on port 465."""

    def __init__(self, host: str, port: int, user: str, password: str,
                 sender_address: str, timeout: float = None):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender_address = sender_address
        self.timeout = timeout or config.SEND_TIMEOUT_SEC

    def _build(self, message: OutboundMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.sender_address
        email["To"] = message.recipient
        email["Subject"] = message.subject
        email["Message-ID"] = make_msgid(idstring=message.dedup_key)
        email.set_content(message.body)
        return email

    def send(self, message: OutboundMessage) -> bool:
        email = self._build(message)
        try:
            if self.port == 465:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
                server.starttls()
            try:
                server.login(self.user, self.password)
                server.send_message(email)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed for letter {message.dedup_key}: {e}")
            return False

        logger.info(f"Letter {message.dedup_key} sent to {message.recipient}")
        return True


def build_sender() -> NotificationSender:
    """Build the configured transport, falling back to NullSender when SMTP is unusable."""
    issues = config.smtp_config_issues()
    if issues:
        logger.warning(f"Email configuration unusable, letters will not be sent: {'; '.join(issues)}")
        return NullSender()

    return SmtpSender(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        user=config.SMTP_USER,
        password=config.SMTP_PASSWORD,
        sender_address=config.EMAIL_FROM or config.SMTP_USER,
    )

"""
Notification backends for backup outcomes.

Delivery is attempted once. Callers treat notification as best-effort and
log failures instead of propagating them.
"""

import abc
import asyncio
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import aiosmtplib

from .errors import NotificationError


logger = logging.getLogger(__name__)


class Notifier(abc.ABC):
    """Interface for sending backup notifications."""

    @abc.abstractmethod
    def send(self, recipients: List[str], subject: str, body: str) -> None:
        """
        Deliver a message to the recipients.

        Raises:
            NotificationError: If delivery fails
        """


class EmailNotifier(Notifier):
    """Sends notifications over SMTP."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        start_tls: bool = False,
        timeout: float = 30,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.username = username
        self.password = password
        self.start_tls = start_tls
        self.timeout = timeout

    def build_message(self, recipients: List[str], subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg['From'] = self.sender
        msg['To'] = ', '.join(recipients)
        msg['Subject'] = subject
        msg.attach(MIMEText(body, 'plain'))
        return msg

    def send(self, recipients: List[str], subject: str, body: str) -> None:
        if not recipients:
            return

        msg = self.build_message(recipients, subject, body)

        try:
            asyncio.run(aiosmtplib.send(
                msg,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.username,
                password=self.password,
                start_tls=self.start_tls,
                timeout=self.timeout,
            ))
        except (aiosmtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email via {self.smtp_host}:{self.smtp_port}: {e}") from e

        logger.info(f"Notification sent to {', '.join(recipients)}: {subject}")

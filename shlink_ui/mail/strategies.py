"""
Mail adapters using Strategy Pattern.
Allows switching the transport (SMTP, MailerSend, console) from the
email.adapter setting without touching the senders.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from collections import deque
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Deque, Dict, Optional

import requests

from shlink_ui.config import settings
from .models import MailDeliveryError, MailMessage

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 100


class MailAdapter(ABC):
    """
    Common interface of every mail transport.

    deliver() either hands the message over or raises MailDeliveryError.
    """

    name = "base"

    def __init__(self, from_address: Optional[str] = None, from_name: Optional[str] = None):
        self.from_address = from_address or settings.mail_from_address
        self.from_name = from_name or settings.mail_from_name

    @abstractmethod
    def deliver(self, message: MailMessage) -> bool:
        pass

    @abstractmethod
    def configured(self) -> bool:
        """True when every setting the transport needs is present."""
        pass

    def available(self) -> bool:
        return self.configured()

    def sender(self, message: MailMessage):
        return message.from_address or self.from_address, message.from_name or self.from_name


class SmtpMailAdapter(MailAdapter):
    name = "smtp"

    def __init__(
        self,
        address: str = "",
        port: int = 587,
        user_name: str = "",
        password: str = "",
        authentication: str = "plain",
        enable_starttls_auto: bool = True,
        timeout: int = 30,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.address = address
        self.port = int(port or 587)
        self.user_name = user_name
        self.password = password
        self.authentication = authentication
        self.enable_starttls_auto = enable_starttls_auto
        self.timeout = timeout

    def configured(self) -> bool:
        return bool(self.address and self.port and self.from_address)

    def build(self, message: MailMessage) -> EmailMessage:
        from_address, from_name = self.sender(message)
        email = EmailMessage()
        email["From"] = formataddr((from_name, from_address)) if from_name else from_address
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.text_body)
        if message.html_body:
            email.add_alternative(message.html_body, subtype="html")
        return email

    def deliver(self, message: MailMessage) -> bool:
        if not self.configured():
            raise MailDeliveryError("SMTP settings are incomplete")

        logger.info("Sending mail via SMTP %s:%s: %s -> %s", self.address, self.port, message.subject, message.to)
        try:
            with smtplib.SMTP(self.address, self.port, timeout=self.timeout) as smtp:
                if self.enable_starttls_auto:
                    smtp.ehlo()
                    if smtp.has_extn("starttls"):
                        smtp.starttls()
                        smtp.ehlo()
                if self.user_name:
                    smtp.login(self.user_name, self.password)
                smtp.send_message(self.build(message))
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery failed: %s", e)
            raise MailDeliveryError(f"SMTP delivery failed: {e}", e) from e
        return True


class MailersendMailAdapter(MailAdapter):
    """Sends through the MailerSend HTTP API (POST /v1/email)."""

    name = "mailersend"

    def __init__(self, api_key: str = "", api_url: Optional[str] = None, timeout: int = 30, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.api_url = api_url or settings.mailersend_api_url
        self.timeout = timeout

    def configured(self) -> bool:
        return bool(self.api_key and self.from_address and self.from_name)

    def payload(self, message: MailMessage) -> Dict[str, Any]:
        from_address, from_name = self.sender(message)
        body: Dict[str, Any] = {
            "from": {"email": from_address, "name": from_name},
            "to": [{"email": message.to}],
            "subject": message.subject,
            "text": message.text_body,
        }
        if message.html_body:
            body["html"] = message.html_body
        return body

    def deliver(self, message: MailMessage) -> bool:
        if not self.configured():
            raise MailDeliveryError("MailerSend settings are incomplete")

        logger.info("Sending mail via MailerSend: %s -> %s", message.subject, message.to)
        try:
            response = requests.post(
                self.api_url,
                json=self.payload(message),
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("MailerSend request failed: %s", e)
            raise MailDeliveryError(f"MailerSend request failed: {e}", e) from e

        if response.status_code not in (200, 202):
            logger.error("MailerSend rejected the message (%s): %s", response.status_code, response.text)
            raise MailDeliveryError(f"MailerSend API error ({response.status_code})")
        return True


class ConsoleMailAdapter(MailAdapter):
    """
    Development transport: logs the message and keeps the last
    OUTBOX_SIZE messages in `outbox`.
    """

    name = "console"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.outbox: Deque[MailMessage] = deque(maxlen=OUTBOX_SIZE)

    def configured(self) -> bool:
        return True

    def deliver(self, message: MailMessage) -> bool:
        self.outbox.append(message)
        logger.info("Mail to %s: %s\n%s", message.to, message.subject, message.text_body)
        return True

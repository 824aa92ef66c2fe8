"""
Outgoing mail.
Implements Strategy Pattern for the mail transports.
"""

from .models import MailDeliveryError, MailMessage
from .strategies import ConsoleMailAdapter, MailAdapter, MailersendMailAdapter, SmtpMailAdapter
from .factory import MailAdapterFactory, MailBackend

__all__ = [
    "MailMessage",
    "MailDeliveryError",
    "MailAdapter",
    "SmtpMailAdapter",
    "MailersendMailAdapter",
    "ConsoleMailAdapter",
    "MailAdapterFactory",
    "MailBackend",
]

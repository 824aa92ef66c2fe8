"""
Factory for mail adapters.

Unlike the cache and queue factories there is no singleton here: the
adapter is rebuilt whenever the email settings change.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from .strategies import ConsoleMailAdapter, MailAdapter, MailersendMailAdapter, SmtpMailAdapter
from shlink_ui.config import settings

logger = logging.getLogger(__name__)


class MailBackend(Enum):
    """Available mail transports"""
    SMTP = "smtp"
    MAILERSEND = "mailersend"
    CONSOLE = "console"


ADAPTERS = {
    MailBackend.SMTP: SmtpMailAdapter,
    MailBackend.MAILERSEND: MailersendMailAdapter,
    MailBackend.CONSOLE: ConsoleMailAdapter,
}


def default_backend() -> MailBackend:
    if settings.environment in ("development", "test"):
        return MailBackend.CONSOLE
    return MailBackend.SMTP


class MailAdapterFactory:
    @classmethod
    def resolve(cls, name: Optional[str]) -> MailBackend:
        """Backend for a setting value, the environment default when unknown."""
        try:
            return MailBackend(str(name or "").strip().lower())
        except ValueError:
            backend = default_backend()
            logger.warning("Unknown mail adapter %r, using %s", name, backend.value)
            return backend

    @classmethod
    def create(cls, name: Optional[str], options: Optional[Dict[str, Any]] = None) -> MailAdapter:
        backend = cls.resolve(name)
        options = options or {}
        adapter_cls = ADAPTERS[backend]

        if backend == MailBackend.SMTP:
            adapter = adapter_cls(
                address=options.get("smtp_address", ""),
                port=options.get("smtp_port", 587),
                user_name=options.get("smtp_user_name", ""),
                password=options.get("smtp_password", ""),
                authentication=options.get("smtp_authentication", "plain"),
                enable_starttls_auto=options.get("smtp_enable_starttls_auto", True),
                from_address=options.get("from_address"),
                from_name=options.get("from_name"),
            )
        elif backend == MailBackend.MAILERSEND:
            adapter = adapter_cls(
                api_key=options.get("mailersend_api_key", ""),
                from_address=options.get("from_address"),
                from_name=options.get("from_name"),
            )
        else:
            adapter = adapter_cls(
                from_address=options.get("from_address"),
                from_name=options.get("from_name"),
            )

        if not adapter.configured():
            logger.warning("%s mail adapter is not fully configured", backend.value)
        logger.info("Mail adapter set to %s", backend.value)
        return adapter

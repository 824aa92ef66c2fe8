"""
Runtime parameters derived from the system settings.

`runtime` holds what the rest of the app reads on every request: the
statistics time zone, the sign-in lockout policy and the active mail
adapter. reconfigure() rebuilds it from AppConfig after a settings
write (and once at startup). Each subsystem is applied on its own; a
failure is logged and reported in the returned dict, never raised.
"""

import logging
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Dict

from shlink_ui.clock import resolve_timezone
from shlink_ui.config import settings
from shlink_ui.database.connection import set_session_timeout
from shlink_ui.logging_setup import set_log_level
from shlink_ui.mail.factory import MailAdapterFactory, default_backend
from shlink_ui.mail.strategies import MailAdapter
from shlink_ui.services.app_config import AppConfig

logger = logging.getLogger(__name__)


@dataclass
class AuthPolicy:
    max_login_attempts: int = 5
    lockout_minutes: int = 30
    session_timeout: int = 7200
    password_min_length: int = 8


@dataclass
class RuntimeConfig:
    timezone: tzinfo = timezone.utc
    log_level: str = "info"
    database_timeout: int = 30
    auth: AuthPolicy = field(default_factory=AuthPolicy)
    mail_adapter: MailAdapter = None


runtime = RuntimeConfig()


def mail_adapter() -> MailAdapter:
    """The active mail adapter, built with env defaults until the first reconfigure."""
    if runtime.mail_adapter is None:
        runtime.mail_adapter = MailAdapterFactory.create(default_backend().value)
    return runtime.mail_adapter


async def _timezone(config: AppConfig):
    runtime.timezone = resolve_timezone(await config.string("system.timezone", settings.timezone))


async def _log_level(config: AppConfig):
    runtime.log_level = await config.string("system.log_level", settings.log_level)
    set_log_level(runtime.log_level)


async def _database(config: AppConfig):
    seconds = await config.number("performance.database_timeout", 30)
    if seconds <= 0:
        raise ValueError(f"invalid database timeout: {seconds}")
    set_session_timeout(seconds)
    runtime.database_timeout = seconds


async def _auth(config: AppConfig):
    runtime.auth = AuthPolicy(
        max_login_attempts=await config.number("security.max_login_attempts", 5),
        lockout_minutes=await config.number("security.account_lockout_time", 30),
        session_timeout=await config.number("security.session_timeout", 7200),
        password_min_length=await config.number("security.password_min_length", 8),
    )


async def _mail(config: AppConfig):
    options = {
        key.split(".", 1)[1]: value
        for key, value in config.category("email").items()
    }
    options.setdefault("from_address", settings.mail_from_address)
    options.setdefault("from_name", settings.mail_from_name)
    name = await config.string("email.adapter", default_backend().value)
    runtime.mail_adapter = MailAdapterFactory.create(name, options)


SUBSYSTEMS = (
    ("timezone", _timezone),
    ("log_level", _log_level),
    ("database", _database),
    ("auth", _auth),
    ("mail", _mail),
)


async def reconfigure(config: AppConfig) -> Dict[str, str]:
    """
    Re-apply every settings-dependent subsystem.

    Returns {subsystem: "ok" | "error: <message>"}.
    """
    await config.invalidate()
    results = {}
    for name, apply in SUBSYSTEMS:
        try:
            await apply(config)
            results[name] = "ok"
        except Exception as e:
            logger.error("Failed to reconfigure %s: %s", name, e)
            results[name] = f"error: {e}"
    logger.info("Runtime configuration reloaded: %s", results)
    return results

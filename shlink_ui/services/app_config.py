"""
Layered configuration lookup.

Priority, highest first: system_settings table, environment variable
(``captcha.site_key`` -> ``CAPTCHA_SITE_KEY``), static Settings attribute
(``captcha_site_key``), then the caller's default.

Database hits are cached under ``app_config:`` until the next
invalidate(); everything else is cheap enough to read every time.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from shlink_ui.cache.strategies import CacheStrategy
from shlink_ui.config import Settings, settings
from shlink_ui.services.settings_store import TRUE_VALUES, SettingsStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "app_config:"

# Setting keys whose static counterpart does not follow the dotted-name rule
STATIC_ALIASES = {
    "system.timezone": "timezone",
    "system.log_level": "log_level",
    "rate_limit.requests_per_minute": "rate_limit_per_minute",
    "email.from_address": "mail_from_address",
    "email.from_name": "mail_from_name",
    "jobs.max_attempts": "job_max_attempts",
    "performance.cache_ttl": "cache_ttl",
    "captcha.timeout": "turnstile_timeout",
}


def parse_env_value(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered.lstrip("-").isdigit():
        return int(lowered)
    if lowered[:1] in ("[", "{"):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _present(value: Any) -> bool:
    return value is not None and not (isinstance(value, str) and value == "")


class AppConfig:
    def __init__(
        self,
        store: SettingsStore,
        cache: Optional[CacheStrategy] = None,
        static: Settings = settings,
        ttl: Optional[int] = None,
    ):
        self.store = store
        self.cache = cache
        self.static = static
        self.ttl = ttl or static.cache_ttl

    async def _from_store(self, key: str) -> Any:
        cache_key = f"{CACHE_PREFIX}{key}"
        if self.cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return json.loads(cached)["value"]

        value = self.store.get(key)

        if self.cache:
            await self.cache.set(cache_key, json.dumps({"value": value}), ttl=self.ttl)
        return value

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            value = await self._from_store(key)
        except Exception as e:
            # A missing table (first boot) or a DB outage falls through to env
            logger.error("AppConfig.get error for %r: %s", key, e)
            value = None
        if _present(value):
            return value

        env_value = os.environ.get(key.upper().replace(".", "_"))
        if env_value:
            return parse_env_value(env_value)

        static_value = getattr(self.static, STATIC_ALIASES.get(key, key.replace(".", "_")), None)
        if _present(static_value):
            return static_value

        return default

    async def enabled(self, key: str, default: bool = False) -> bool:
        value = await self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in TRUE_VALUES
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value > 0
        return bool(value)

    async def number(self, key: str, default: int = 0) -> int:
        value = await self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    async def string(self, key: str, default: str = "") -> str:
        value = await self.get(key, default)
        return default if value is None else str(value)

    async def array(self, key: str, default: Optional[List] = None) -> List:
        value = await self.get(key, default if default is not None else [])
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except ValueError:
                return [part.strip() for part in value.split(",") if part.strip()]
            return parsed if isinstance(parsed, list) else [parsed]
        if value is None:
            return []
        return [value]

    def category(self, name: str) -> Dict[str, Any]:
        return self.store.by_category(name)

    async def invalidate(self) -> int:
        if not self.cache:
            return 0
        return await self.cache.delete_prefix(CACHE_PREFIX)

"""
Typed access to the system_settings table.

Values are stored as text and converted according to the row's
setting_type. Writes only touch the database: callers follow them with
AppConfig.invalidate() and runtime_config.reconfigure().
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from shlink_ui.models.system_setting import CATEGORIES, SETTING_TYPES, SystemSetting

logger = logging.getLogger(__name__)

TRUE_VALUES = ("true", "1", "yes", "on", "enabled")


def _default(key, value, setting_type, category, description):
    return {
        "key_name": key,
        "value": value,
        "setting_type": setting_type,
        "category": category,
        "description": description,
    }


DEFAULT_SETTINGS: List[Dict[str, Any]] = [
    _default("captcha.enabled", "false", "boolean", "captcha", "Enable CAPTCHA on sign-in and sign-up"),
    _default("captcha.site_key", "", "string", "captcha", "Cloudflare Turnstile site key"),
    _default("captcha.secret_key", "", "string", "captcha", "Cloudflare Turnstile secret key"),
    _default("captcha.timeout", "10", "integer", "captcha", "Turnstile verification timeout (seconds)"),

    _default("rate_limit.enabled", "true", "boolean", "rate_limit", "Enable rate limiting"),
    _default("rate_limit.requests_per_minute", "60", "integer", "rate_limit", "Requests per minute per IP"),
    _default("rate_limit.url_creation_per_hour", "100", "integer", "rate_limit", "Short URLs created per hour per IP"),
    _default("rate_limit.login_per_hour", "10", "integer", "rate_limit", "Sign-in attempts per hour per IP"),

    _default("email.adapter", "smtp", "string", "email", "Mail transport (smtp, mailersend, console)"),
    _default("email.from_address", "noreply@example.com", "string", "email", "Sender address"),
    _default("email.from_name", "Shlink UI", "string", "email", "Sender name"),
    _default("email.smtp_address", "smtp.gmail.com", "string", "email", "SMTP host"),
    _default("email.smtp_port", "587", "integer", "email", "SMTP port"),
    _default("email.smtp_user_name", "", "string", "email", "SMTP user name"),
    _default("email.smtp_password", "", "string", "email", "SMTP password"),
    _default("email.smtp_authentication", "plain", "string", "email", "SMTP authentication method"),
    _default("email.smtp_enable_starttls_auto", "true", "boolean", "email", "Use STARTTLS when offered"),
    _default("email.mailersend_api_key", "", "string", "email", "MailerSend API key"),

    _default("performance.items_per_page", "20", "integer", "performance", "Items per page in listings"),
    _default("performance.cache_ttl", "3600", "integer", "performance", "Default cache TTL (seconds)"),
    _default("performance.database_timeout", "30", "integer", "performance", "Database session timeout (seconds)"),
    _default("performance.max_short_urls_per_user", "1000", "integer", "performance", "Maximum short URLs per user"),

    _default("security.max_login_attempts", "5", "integer", "security", "Failed sign-ins before the account locks"),
    _default("security.account_lockout_time", "30", "integer", "security", "Account lock duration (minutes)"),
    _default("security.session_timeout", "7200", "integer", "security", "Session inactivity timeout (seconds)"),
    _default("security.password_min_length", "8", "integer", "security", "Minimum password length"),
    _default("security.require_2fa_for_admin", "false", "boolean", "security", "Require 2FA for administrators"),

    _default("system.site_name", "Shlink UI", "string", "system", "Site name"),
    _default("system.site_url", "http://localhost:8000", "string", "system", "Public site URL"),
    _default("system.timezone", "UTC", "string", "system", "Time zone used for statistics"),
    _default("system.log_level", "info", "string", "system", "Log level (debug, info, warn, error, fatal)"),
    _default("system.allowed_domains", "[]", "array", "system", "Allowed target domains (empty allows all)"),

    _default("jobs.max_attempts", "3", "integer", "system", "Attempts before a background job is marked failed"),
]

DEFAULTS_BY_KEY = {entry["key_name"]: entry for entry in DEFAULT_SETTINGS}


def cast_value(value: Optional[str], setting_type: str) -> Any:
    """Convert the stored text into the Python value for its type."""
    if value is None:
        return None
    if setting_type == "integer":
        try:
            return int(str(value).strip())
        except ValueError:
            return None
    if setting_type == "boolean":
        return str(value).strip().lower() in TRUE_VALUES
    if setting_type in ("json", "array"):
        if not str(value).strip():
            return None
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def serialize_value(value: Any, setting_type: str) -> str:
    """Convert a Python (or form) value into the stored text."""
    if setting_type in ("json", "array"):
        if isinstance(value, str):
            return value
        return json.dumps(value)
    if setting_type == "boolean":
        if isinstance(value, str):
            return "true" if value.strip().lower() in TRUE_VALUES else "false"
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class SettingsStore:
    def __init__(self, db: Session):
        self.db = db

    def find(self, key: str) -> Optional[SystemSetting]:
        return self.db.query(SystemSetting).filter(SystemSetting.key_name == key).first()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Typed value of an enabled setting.

        The default is only used when the key is missing or disabled (or
        its stored value cannot be cast); a stored false or 0 is returned.
        """
        setting = self.find(key)
        if setting is None or not setting.enabled:
            return default
        value = cast_value(setting.value, setting.setting_type)
        return default if value is None else value

    def set(
        self,
        key: str,
        value: Any,
        setting_type: Optional[str] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        enabled: bool = True,
    ) -> SystemSetting:
        setting = self._assign(key, value, setting_type, category, description, enabled)
        self.db.commit()
        self.db.refresh(setting)
        return setting

    def _assign(self, key, value, setting_type, category, description, enabled) -> SystemSetting:
        setting = self.find(key)
        if setting is None:
            default = DEFAULTS_BY_KEY.get(key, {})
            setting = SystemSetting(
                key_name=key,
                setting_type=setting_type or default.get("setting_type", "string"),
                category=category or default.get("category"),
                description=description or default.get("description"),
            )
            self.db.add(setting)
        else:
            if setting_type:
                setting.setting_type = setting_type
            if category:
                setting.category = category
            if description:
                setting.description = description

        if setting.setting_type not in SETTING_TYPES:
            raise ValueError(f"Unknown setting type: {setting.setting_type}")
        if setting.category and setting.category not in CATEGORIES:
            raise ValueError(f"Unknown setting category: {setting.category}")

        setting.value = serialize_value(value, setting.setting_type)
        setting.enabled = enabled
        return setting

    def update_many(self, values: Dict[str, Any]) -> List[str]:
        """
        Write several existing settings in one transaction.

        Unknown keys are skipped. Returns the keys that were written.
        """
        updated = []
        try:
            for key, value in values.items():
                setting = self.find(key)
                if setting is None:
                    logger.debug("Ignoring unknown setting %s", key)
                    continue
                setting.value = serialize_value(value, setting.setting_type)
                updated.append(key)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Updated settings: %s", ", ".join(updated) or "(none)")
        return updated

    def by_category(self, category: str) -> Dict[str, Any]:
        rows = (
            self.db.query(SystemSetting)
            .filter(SystemSetting.category == category, SystemSetting.enabled.is_(True))
            .order_by(SystemSetting.key_name)
            .all()
        )
        return {row.key_name: cast_value(row.value, row.setting_type) for row in rows}

    def grouped(self) -> Dict[str, List[Dict[str, Any]]]:
        """Enabled settings grouped by category, for the admin screen."""
        result: Dict[str, List[Dict[str, Any]]] = {category: [] for category in CATEGORIES}
        rows = (
            self.db.query(SystemSetting)
            .filter(SystemSetting.enabled.is_(True))
            .order_by(SystemSetting.key_name)
            .all()
        )
        for row in rows:
            result.setdefault(row.category or "system", []).append(self.serialize(row))
        return result

    @staticmethod
    def serialize(setting: SystemSetting) -> Dict[str, Any]:
        return {
            "key_name": setting.key_name,
            "value": cast_value(setting.value, setting.setting_type),
            "setting_type": setting.setting_type,
            "category": setting.category,
            "description": setting.description,
        }

    def initialize_defaults(self, defaults: Iterable[Dict[str, Any]] = DEFAULT_SETTINGS) -> int:
        """Create missing default settings without overwriting existing ones."""
        existing = {key for (key,) in self.db.query(SystemSetting.key_name)}
        created = 0
        for entry in defaults:
            if entry["key_name"] in existing:
                continue
            self.db.add(SystemSetting(enabled=True, **entry))
            created += 1
        self.db.commit()
        if created:
            logger.info("Seeded %d default settings", created)
        return created

    def reset(self, category: str) -> int:
        """Drop every setting of a category and re-seed its defaults."""
        if category not in CATEGORIES:
            raise ValueError(f"Unknown setting category: {category}")
        self.db.query(SystemSetting).filter(SystemSetting.category == category).delete(
            synchronize_session=False
        )
        self.db.commit()
        return self.initialize_defaults(d for d in DEFAULT_SETTINGS if d["category"] == category)

"""
Tests for the settings store, layered config and runtime reconfiguration.
"""
import asyncio
import logging
from datetime import timezone

import pytest

from shlink_ui.cache.strategies import InMemoryCache
from shlink_ui.config import Settings
from shlink_ui.mail.strategies import ConsoleMailAdapter, MailersendMailAdapter
from shlink_ui.models.system_setting import SystemSetting
from shlink_ui.services.app_config import AppConfig, parse_env_value
from shlink_ui.services.runtime_config import reconfigure, runtime
from shlink_ui.services.settings_store import DEFAULT_SETTINGS, SettingsStore, cast_value, serialize_value


class TestCasting:
    def test_cast_by_type(self):
        assert cast_value("42", "integer") == 42
        assert cast_value("abc", "integer") is None
        assert cast_value("yes", "boolean") is True
        assert cast_value("false", "boolean") is False
        assert cast_value('["a.com"]', "array") == ["a.com"]
        assert cast_value('{"a": 1}', "json") == {"a": 1}
        assert cast_value("plain", "string") == "plain"

    def test_serialize_by_type(self):
        assert serialize_value(True, "boolean") == "true"
        assert serialize_value("off", "boolean") == "false"
        assert serialize_value(["a"], "array") == '["a"]'
        assert serialize_value(15, "integer") == "15"


class TestSettingsStore:
    def test_get_returns_default_when_absent(self, db_session):
        assert SettingsStore(db_session).get("nope.key", "fallback") == "fallback"

    def test_get_returns_default_when_disabled(self, db_session):
        store = SettingsStore(db_session)
        store.set("system.site_name", "Mine", enabled=False)
        assert store.get("system.site_name", "fallback") == "fallback"

    def test_stored_false_and_zero_are_returned(self, db_session):
        store = SettingsStore(db_session)
        store.set("captcha.enabled", False)
        store.set("performance.cache_ttl", 0)
        assert store.get("captcha.enabled", True) is False
        assert store.get("performance.cache_ttl", 99) == 0

    def test_set_uses_known_type_and_category(self, db_session):
        store = SettingsStore(db_session)
        setting = store.set("security.max_login_attempts", 7)
        assert setting.setting_type == "integer"
        assert setting.category == "security"
        assert store.get("security.max_login_attempts") == 7

    def test_set_rejects_unknown_type(self, db_session):
        with pytest.raises(ValueError):
            SettingsStore(db_session).set("custom.key", "x", setting_type="float")

    def test_initialize_defaults_does_not_overwrite(self, db_session):
        store = SettingsStore(db_session)
        store.set("system.site_name", "Custom")

        created = store.initialize_defaults()

        assert created == len(DEFAULT_SETTINGS) - 1
        assert store.get("system.site_name") == "Custom"
        assert store.initialize_defaults() == 0

    def test_update_many_skips_unknown(self, db_session):
        store = SettingsStore(db_session)
        store.initialize_defaults()

        updated = store.update_many({"security.max_login_attempts": "3", "nope": "x"})

        assert updated == ["security.max_login_attempts"]
        assert store.get("security.max_login_attempts") == 3

    def test_reset_category(self, db_session):
        store = SettingsStore(db_session)
        store.initialize_defaults()
        store.set("security.max_login_attempts", 99)
        store.set("system.site_name", "Kept")

        store.reset("security")

        assert store.get("security.max_login_attempts") == 5
        assert store.get("system.site_name") == "Kept"

    def test_grouped(self, db_session):
        store = SettingsStore(db_session)
        store.initialize_defaults()
        grouped = store.grouped()
        assert set(grouped) >= {"captcha", "rate_limit", "email", "performance", "security", "system"}
        keys = [s["key_name"] for s in grouped["security"]]
        assert "security.session_timeout" in keys


class TestAppConfig:
    def test_priority_db_env_static_default(self, db_session, monkeypatch):
        store = SettingsStore(db_session)
        static = Settings(timezone="Asia/Tokyo")
        config = AppConfig(store, static=static)

        assert asyncio.run(config.get("system.timezone")) == "Asia/Tokyo"
        assert asyncio.run(config.get("unknown.key", "dflt")) == "dflt"

        monkeypatch.setenv("SYSTEM_TIMEZONE", "Europe/Paris")
        assert asyncio.run(config.get("system.timezone")) == "Europe/Paris"

        store.set("system.timezone", "America/New_York")
        assert asyncio.run(config.get("system.timezone")) == "America/New_York"

    def test_cache_until_invalidated(self, db_session):
        store = SettingsStore(db_session)
        store.set("system.site_name", "First")
        config = AppConfig(store, cache=InMemoryCache())

        assert asyncio.run(config.string("system.site_name")) == "First"
        store.set("system.site_name", "Second")
        assert asyncio.run(config.string("system.site_name")) == "First"

        asyncio.run(config.invalidate())
        assert asyncio.run(config.string("system.site_name")) == "Second"

    def test_typed_helpers(self, db_session):
        store = SettingsStore(db_session)
        store.initialize_defaults()
        store.set("system.allowed_domains", ["example.com"])
        config = AppConfig(store)

        assert asyncio.run(config.enabled("rate_limit.enabled")) is True
        assert asyncio.run(config.number("performance.items_per_page")) == 20
        assert asyncio.run(config.array("system.allowed_domains")) == ["example.com"]
        assert config.category("captcha")["captcha.timeout"] == 10

    def test_parse_env_value(self):
        assert parse_env_value("TRUE") is True
        assert parse_env_value("12") == 12
        assert parse_env_value('["a"]') == ["a"]
        assert parse_env_value("text") == "text"


class TestReconfigure:
    def test_applies_every_subsystem(self, db_session):
        store = SettingsStore(db_session)
        store.initialize_defaults()
        store.update_many({
            "system.timezone": "Asia/Tokyo",
            "system.log_level": "debug",
            "security.max_login_attempts": 3,
            "security.session_timeout": 600,
            "email.adapter": "mailersend",
            "email.mailersend_api_key": "mlsn.key",
        })

        results = asyncio.run(reconfigure(AppConfig(store, cache=InMemoryCache())))

        assert set(results.values()) == {"ok"}
        assert str(runtime.timezone) == "Asia/Tokyo"
        assert logging.getLogger("shlink_ui").level == logging.DEBUG
        assert runtime.auth.max_login_attempts == 3
        assert runtime.auth.session_timeout == 600
        assert isinstance(runtime.mail_adapter, MailersendMailAdapter)

    def test_one_failure_does_not_block_others(self, db_session):
        store = SettingsStore(db_session)
        store.initialize_defaults()
        store.update_many({"system.timezone": "Not/AZone", "security.max_login_attempts": 4})

        results = asyncio.run(reconfigure(AppConfig(store)))

        assert results["timezone"].startswith("error")
        assert results["auth"] == "ok"
        assert runtime.timezone == timezone.utc
        assert runtime.auth.max_login_attempts == 4

    def test_unknown_adapter_uses_environment_default(self, db_session):
        store = SettingsStore(db_session)
        store.set("email.adapter", "pigeon")

        asyncio.run(reconfigure(AppConfig(store)))

        assert isinstance(runtime.mail_adapter, ConsoleMailAdapter)

    def test_setting_rows_are_enabled_by_default(self, db_session):
        SettingsStore(db_session).initialize_defaults()
        assert db_session.query(SystemSetting).filter(SystemSetting.enabled.is_(False)).count() == 0

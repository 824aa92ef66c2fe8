from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from shlink_ui.database.connection import Base

SETTING_TYPES = ("string", "integer", "boolean", "json", "array")
CATEGORIES = ("captcha", "rate_limit", "email", "performance", "security", "system", "legal")


class SystemSetting(Base):
    """
    One admin-editable setting.

    Values are stored as text and cast on read according to setting_type,
    see services.settings_store for the conversion rules.
    """
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    key_name = Column(String(255), unique=True, nullable=False, index=True)
    value = Column(Text)
    setting_type = Column(String(16), nullable=False, default="string")
    category = Column(String(32), index=True)
    description = Column(Text)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

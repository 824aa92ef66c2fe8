"""
Database models.

Visit data is not modelled here: it always comes from the Shlink API and
is only cached (shaped) by the statistics services.
"""

from .short_url import ShortUrl
from .user import User
from .system_setting import SystemSetting
from .webauthn_credential import WebauthnCredential
from .background_job import BackgroundJob

__all__ = ["ShortUrl", "User", "SystemSetting", "WebauthnCredential", "BackgroundJob"]

"""
Cloudflare Turnstile verification.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from shlink_ui.config import settings
from shlink_ui.services.app_config import AppConfig

logger = logging.getLogger(__name__)


@dataclass
class CaptchaResult:
    success: bool
    error_codes: List[str] = field(default_factory=list)
    challenge_ts: Optional[str] = None
    hostname: Optional[str] = None


class CaptchaService:
    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    async def enabled(self) -> bool:
        return await self.config.enabled("captcha.enabled", False)

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> CaptchaResult:
        """
        Check a Turnstile token.

        Always succeeds while CAPTCHA is disabled, even without a token.
        """
        if not await self.enabled():
            logger.debug("CAPTCHA verification skipped (disabled)")
            return CaptchaResult(success=True)
        if not token:
            return CaptchaResult(success=False, error_codes=["missing-input-response"])

        params = {"secret": await self.config.string("captcha.secret_key"), "response": token}
        if remote_ip:
            params["remoteip"] = remote_ip
        timeout = await self.config.number("captcha.timeout", settings.turnstile_timeout)

        try:
            response = self.session.post(settings.turnstile_verify_url, data=params, timeout=timeout)
        except requests.Timeout:
            return CaptchaResult(success=False, error_codes=["timeout"])
        except requests.RequestException as e:
            logger.error("CAPTCHA verification failed: %s", e)
            return CaptchaResult(success=False, error_codes=["network-error"])

        if not response.ok:
            return CaptchaResult(success=False, error_codes=["invalid-response"])
        try:
            body = response.json()
        except ValueError:
            return CaptchaResult(success=False, error_codes=["invalid-json"])

        return CaptchaResult(
            success=body.get("success") is True,
            error_codes=body.get("error-codes") or [],
            challenge_ts=body.get("challenge_ts"),
            hostname=body.get("hostname"),
        )

"""
Time-based one-time passwords (RFC 6238) and backup codes.

The TOTP secret and the backup code list are stored signed with the
application secret key, so a value edited in the database is rejected.
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import struct
import time
from typing import List, Optional
from urllib.parse import quote, urlencode

import qrcode
import qrcode.image.svg
from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy.orm import Session

from shlink_ui.clock import utcnow
from shlink_ui.config import settings
from shlink_ui.models.user import User

logger = logging.getLogger(__name__)

BACKUP_CODE_COUNT = 8
BACKUP_CODE_LENGTH = 8
DIGITS = 6
INTERVAL = 30


def totp_at(secret: str, timestamp: float, digits: int = DIGITS, interval: int = INTERVAL) -> str:
    key = base64.b32decode(secret.upper() + "=" * (-len(secret) % 8))
    counter = struct.pack(">Q", int(timestamp) // interval)
    digest = hmac.new(key, counter, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(code % 10 ** digits).zfill(digits)


def random_secret() -> str:
    return base64.b32encode(secrets.token_bytes(20)).decode("ascii").rstrip("=")


def normalize_backup_code(code: str) -> str:
    return "".join(ch for ch in code if not ch.isspace() and ch != "-").lower()


class TotpService:
    def __init__(self, db: Session, user: User, secret_key: Optional[str] = None):
        self.db = db
        self.user = user
        key = secret_key or settings.secret_key
        self._secret_signer = URLSafeSerializer(key, salt="otp_secret")
        self._codes_signer = URLSafeSerializer(key, salt="backup_codes")

    def secret(self) -> Optional[str]:
        if not self.user.otp_secret_key:
            return None
        try:
            return self._secret_signer.loads(self.user.otp_secret_key)
        except BadSignature:
            logger.error("Invalid OTP secret signature for user %s", self.user.id)
            return None

    def generate_secret(self) -> str:
        secret = random_secret()
        self.user.otp_secret_key = self._secret_signer.dumps(secret)
        self.db.commit()
        return secret

    def get_or_create_secret(self) -> str:
        return self.secret() or self.generate_secret()

    def provisioning_uri(self, issuer: str = settings.app_name) -> Optional[str]:
        secret = self.secret()
        if not secret:
            return None
        label = quote(f"{issuer}:{self.user.email}")
        query = urlencode({"secret": secret, "issuer": issuer})
        return f"otpauth://totp/{label}?{query}"

    def qr_code_svg(self, issuer: str = settings.app_name) -> Optional[str]:
        uri = self.provisioning_uri(issuer)
        if not uri:
            return None
        image = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage, box_size=10)
        return image.to_string(encoding="unicode")

    def verify_code(self, code: Optional[str], drift: int = 30, at: Optional[float] = None) -> bool:
        secret = self.secret()
        if not secret or not code:
            return False
        code = code.strip().replace(" ", "")
        now = time.time() if at is None else at
        steps = drift // INTERVAL
        for step in range(-steps, steps + 1):
            if hmac.compare_digest(totp_at(secret, now + step * INTERVAL), code):
                return True
        return False

    def backup_codes(self) -> List[str]:
        if not self.user.otp_backup_codes:
            return []
        try:
            return json.loads(self._codes_signer.loads(self.user.otp_backup_codes))
        except (BadSignature, ValueError):
            logger.error("Invalid backup code signature for user %s", self.user.id)
            return []

    def _store_backup_codes(self, codes: List[str]):
        self.user.otp_backup_codes = self._codes_signer.dumps(json.dumps(codes)) if codes else None

    def generate_backup_codes(self) -> List[str]:
        codes = [secrets.token_hex(BACKUP_CODE_LENGTH // 2) for _ in range(BACKUP_CODE_COUNT)]
        self._store_backup_codes(codes)
        self.user.otp_backup_codes_generated_at = utcnow()
        self.db.commit()
        return codes

    def verify_backup_code(self, code: Optional[str]) -> bool:
        """Check a backup code and burn it."""
        if not code:
            return False
        codes = self.backup_codes()
        normalized = normalize_backup_code(code)
        if normalized not in codes:
            return False
        codes.remove(normalized)
        self._store_backup_codes(codes)
        self.db.commit()
        return True

    def enable(self, code: str) -> Optional[List[str]]:
        """
        Turn on TOTP after checking a code from the authenticator app.

        Returns the freshly generated backup codes (empty when the user
        already had some), or None if the code was wrong.
        """
        if not self.verify_code(code):
            return None
        self.user.otp_required_for_login = True
        new_codes = [] if self.backup_codes() else self.generate_backup_codes()
        self.db.commit()
        logger.info("TOTP enabled for user %s", self.user.id)
        return new_codes

    def disable(self):
        self.user.otp_required_for_login = False
        self.user.otp_secret_key = None
        self.user.otp_backup_codes = None
        self.user.otp_backup_codes_generated_at = None
        self.db.commit()
        logger.info("TOTP disabled for user %s", self.user.id)

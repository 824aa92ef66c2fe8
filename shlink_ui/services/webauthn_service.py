"""
WebAuthn security keys as a second factor.

Challenges are handed back to the caller, which keeps them in the
session between the options call and the verification call.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.structs import (
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from shlink_ui.clock import utcnow
from shlink_ui.config import settings
from shlink_ui.models.user import User
from shlink_ui.models.webauthn_credential import WebauthnCredential

logger = logging.getLogger(__name__)

TIMEOUT_MS = 60000

Credential = Union[str, Dict[str, Any]]


class WebauthnError(Exception):
    pass


class WebauthnService:
    def __init__(
        self,
        db: Session,
        rp_id: Optional[str] = None,
        rp_name: Optional[str] = None,
        origin: Optional[str] = None,
    ):
        self.db = db
        self.rp_id = rp_id or settings.webauthn_rp_id
        self.rp_name = rp_name or settings.webauthn_rp_name
        self.origin = origin or settings.webauthn_origin

    @staticmethod
    def _descriptors(credentials: List[WebauthnCredential]) -> List[PublicKeyCredentialDescriptor]:
        return [PublicKeyCredentialDescriptor(id=base64url_to_bytes(c.external_id)) for c in credentials]

    def registration_options(self, user: User) -> Tuple[Dict[str, Any], str]:
        """Options for navigator.credentials.create() and the challenge to remember."""
        user_id = user.ensure_webauthn_id()
        self.db.commit()
        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=user_id.encode("utf-8"),
            user_name=user.email,
            user_display_name=user.display_name,
            exclude_credentials=self._descriptors(user.active_webauthn_credentials),
            authenticator_selection=AuthenticatorSelectionCriteria(
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            timeout=TIMEOUT_MS,
        )
        return json.loads(options_to_json(options)), bytes_to_base64url(options.challenge)

    def register(
        self, user: User, credential: Credential, challenge: str, nickname: Optional[str] = None
    ) -> WebauthnCredential:
        try:
            verified = verify_registration_response(
                credential=credential,
                expected_challenge=base64url_to_bytes(challenge),
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
            )
        except Exception as e:
            logger.error("WebAuthn registration failed for user %s: %s", user.id, e)
            raise WebauthnError("Could not register the security key") from e

        nickname = (nickname or "").strip() or f"Security key {len(user.webauthn_credentials) + 1}"
        if any(c.nickname == nickname for c in user.webauthn_credentials):
            raise WebauthnError("A security key with this nickname already exists")

        record = WebauthnCredential(
            user_id=user.id,
            external_id=bytes_to_base64url(verified.credential_id),
            public_key=bytes_to_base64url(verified.credential_public_key),
            sign_count=verified.sign_count,
            nickname=nickname,
            active=True,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info("Registered security key %s for user %s", record.id, user.id)
        return record

    def authentication_options(self, user: User) -> Tuple[Dict[str, Any], str]:
        options = generate_authentication_options(
            rp_id=self.rp_id,
            allow_credentials=self._descriptors(user.active_webauthn_credentials),
            user_verification=UserVerificationRequirement.PREFERRED,
            timeout=TIMEOUT_MS,
        )
        return json.loads(options_to_json(options)), bytes_to_base64url(options.challenge)

    def verify_authentication(self, user: User, credential: Credential, challenge: Optional[str]) -> bool:
        if not challenge:
            return False
        data = json.loads(credential) if isinstance(credential, str) else credential
        credential_id = (data or {}).get("id") or (data or {}).get("rawId")
        stored = next(
            (c for c in user.active_webauthn_credentials if c.external_id == credential_id), None
        )
        if stored is None:
            return False

        try:
            verified = verify_authentication_response(
                credential=credential,
                expected_challenge=base64url_to_bytes(challenge),
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
                credential_public_key=base64url_to_bytes(stored.public_key),
                credential_current_sign_count=stored.sign_count,
            )
        except Exception as e:
            logger.error("WebAuthn authentication failed for user %s: %s", user.id, e)
            return False

        stored.sign_count = verified.new_sign_count
        stored.last_used_at = utcnow()
        self.db.commit()
        return True

    def list(self, user: User) -> List[WebauthnCredential]:
        return (
            self.db.query(WebauthnCredential)
            .filter(WebauthnCredential.user_id == user.id)
            .order_by(WebauthnCredential.created_at)
            .all()
        )

    def remove(self, user: User, credential_id: int) -> bool:
        credential = (
            self.db.query(WebauthnCredential)
            .filter(WebauthnCredential.user_id == user.id, WebauthnCredential.id == credential_id)
            .first()
        )
        if credential is None:
            return False
        self.db.delete(credential)
        self.db.commit()
        return True

    @staticmethod
    def serialize(credential: WebauthnCredential) -> Dict[str, Any]:
        return {
            "id": credential.id,
            "nickname": credential.nickname,
            "active": credential.active,
            "sign_count": credential.sign_count,
            "security_level": credential.security_level,
            "last_used_at": credential.last_used_at.isoformat() if credential.last_used_at else None,
            "created_at": credential.created_at.isoformat() if credential.created_at else None,
        }

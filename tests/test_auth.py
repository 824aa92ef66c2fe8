"""
Tests for password auth, lockout, two-factor sign-in and 2FA management.
"""
import asyncio
import time
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from conftest import PASSWORD, login, make_user
from shlink_ui.clock import utcnow
from shlink_ui.models.background_job import BackgroundJob
from shlink_ui.models.user import User
from shlink_ui.models.webauthn_credential import WebauthnCredential
from shlink_ui.services.auth_service import (
    AccountLockedError,
    AuthError,
    AuthService,
    UnconfirmedAccountError,
    verify_password,
)
from shlink_ui.services.runtime_config import runtime
from shlink_ui.services.totp_service import BACKUP_CODE_COUNT, TotpService, totp_at
from shlink_ui.services.webauthn_service import WebauthnError, WebauthnService


def enable_totp(db, user):
    totp = TotpService(db, user)
    secret = totp.generate_secret()
    codes = totp.enable(totp_at(secret, time.time()))
    return secret, codes


def wrong_code(secret):
    """A six digit code outside the accepted drift window."""
    now = time.time()
    valid = {totp_at(secret, now + step) for step in (-60, -30, 0, 30, 60)}
    return next(c for c in ("000000", "111111", "222222", "333333", "444444", "555555") if c not in valid)


def add_credential(db, user, external_id="cred-1", nickname="Key"):
    credential = WebauthnCredential(
        user_id=user.id, external_id=external_id, public_key="AQID", sign_count=1, nickname=nickname
    )
    db.add(credential)
    db.commit()
    db.refresh(user)
    return credential


class TestAuthService:
    def test_register_hashes_and_normalizes(self, db_session):
        user = AuthService(db_session).register(" New@Example.com ", "longenough", "New")

        assert user.email == "new@example.com"
        assert user.encrypted_password != "longenough"
        assert verify_password("longenough", user.encrypted_password)
        assert user.confirmation_token
        assert not user.is_confirmed

    def test_register_short_password(self, db_session):
        runtime.auth.password_min_length = 12
        with pytest.raises(AuthError) as exc:
            AuthService(db_session).register("a@example.com", "short-pass")
        assert exc.value.status_code == 422

    def test_register_duplicate(self, db_session, user):
        with pytest.raises(AuthError, match="taken"):
            AuthService(db_session).register(user.email, "longenough")

    def test_confirm(self, db_session):
        service = AuthService(db_session)
        user = service.register("c@example.com", "longenough")
        assert service.confirm(user.confirmation_token).is_confirmed
        assert service.confirm("bogus") is None

    def test_unknown_and_wrong_password_same_message(self, db_session, user):
        service = AuthService(db_session)
        with pytest.raises(AuthError) as unknown:
            service.authenticate("nobody@example.com", PASSWORD)
        with pytest.raises(AuthError) as wrong:
            service.authenticate(user.email, "wrong")
        assert unknown.value.message == wrong.value.message

    def test_lockout_after_max_attempts(self, db_session, user):
        runtime.auth.max_login_attempts = 3
        service = AuthService(db_session)
        for _ in range(2):
            with pytest.raises(AuthError):
                service.authenticate(user.email, "wrong")
        with pytest.raises(AccountLockedError):
            service.authenticate(user.email, "wrong")
        # Correct password does not help while locked
        with pytest.raises(AccountLockedError):
            service.authenticate(user.email, PASSWORD)

    def test_lock_expires(self, db_session, user):
        runtime.auth.lockout_minutes = 30
        user.locked_at = utcnow() - timedelta(minutes=31)
        user.failed_attempts = 5
        db_session.commit()

        assert AuthService(db_session).authenticate(user.email, PASSWORD).id == user.id
        assert user.failed_attempts == 0

    def test_unconfirmed_cannot_sign_in(self, db_session):
        make_user(db_session, email="u@example.com", confirmed_at=None)
        with pytest.raises(UnconfirmedAccountError):
            AuthService(db_session).authenticate("u@example.com", PASSWORD)

    def test_password_reset(self, db_session, user):
        service = AuthService(db_session)
        service.start_password_reset(user.email)
        token = user.reset_password_token

        service.reset_password(token, "brand-new-password")

        assert verify_password("brand-new-password", user.encrypted_password)
        assert user.reset_password_token is None

    def test_password_reset_expired(self, db_session, user):
        service = AuthService(db_session)
        service.start_password_reset(user.email)
        user.reset_password_sent_at = utcnow() - timedelta(hours=7)
        db_session.commit()

        with pytest.raises(AuthError, match="expired"):
            service.reset_password(user.reset_password_token, "brand-new-password")

    def test_oauth_find_or_create(self, db_session, user):
        service = AuthService(db_session)
        assert service.from_oauth("google_oauth2", "1", user.email, "X").id == user.id

        created = service.from_oauth("google_oauth2", "2", "g@example.com", "Gee")
        assert created.is_confirmed
        assert created.from_oauth
        assert not created.requires_two_factor

        with pytest.raises(AuthError):
            service.from_oauth("google_oauth2", "3", "noname@example.com", None)


class TestTotp:
    def test_enable_requires_valid_code(self, db_session, user):
        totp = TotpService(db_session, user)
        secret = totp.generate_secret()
        assert totp.enable(wrong_code(secret)) is None
        assert not user.totp_enabled

    def test_enable_generates_backup_codes(self, db_session, user):
        _, codes = enable_totp(db_session, user)
        assert len(codes) == BACKUP_CODE_COUNT
        assert user.totp_enabled
        assert user.requires_two_factor

    def test_drift_window(self, db_session, user):
        secret, _ = enable_totp(db_session, user)
        totp = TotpService(db_session, user)
        now = time.time()
        assert totp.verify_code(totp_at(secret, now - 30), at=now)
        assert totp.verify_code(totp_at(secret, now + 30), at=now)
        assert not totp.verify_code(totp_at(secret, now - 120), at=now)

    def test_backup_code_single_use(self, db_session, user):
        _, codes = enable_totp(db_session, user)
        totp = TotpService(db_session, user)
        assert totp.verify_backup_code(codes[0].upper())
        assert not totp.verify_backup_code(codes[0])
        assert len(totp.backup_codes()) == BACKUP_CODE_COUNT - 1

    def test_secret_is_signed(self, db_session, user):
        secret, _ = enable_totp(db_session, user)
        assert secret not in user.otp_secret_key
        assert TotpService(db_session, user, secret_key="other-key").secret() is None

    def test_provisioning_uri_and_qr(self, db_session, user):
        secret, _ = enable_totp(db_session, user)
        totp = TotpService(db_session, user)
        assert totp.provisioning_uri().startswith("otpauth://totp/")
        assert f"secret={secret}" in totp.provisioning_uri()
        assert "<svg" in totp.qr_code_svg()

    def test_disable(self, db_session, user):
        enable_totp(db_session, user)
        TotpService(db_session, user).disable()
        assert not user.totp_enabled
        assert user.otp_backup_codes is None


class TestWebauthnService:
    def test_registration_options(self, db_session, user):
        options, challenge = WebauthnService(db_session).registration_options(user)
        assert options["rp"]["id"] == "localhost"
        assert options["challenge"] == challenge
        assert user.webauthn_id

    def test_register_with_default_nickname(self, db_session, user):
        verified = SimpleNamespace(credential_id=b"\x01\x02", credential_public_key=b"\x03", sign_count=0)
        with patch("shlink_ui.services.webauthn_service.verify_registration_response", return_value=verified):
            record = WebauthnService(db_session).register(user, {"id": "x"}, "Y2hhbGxlbmdl")
        assert record.nickname == "Security key 1"
        assert record.external_id == "AQI"

    def test_register_failure(self, db_session, user):
        with patch("shlink_ui.services.webauthn_service.verify_registration_response",
                   side_effect=ValueError("bad attestation")):
            with pytest.raises(WebauthnError):
                WebauthnService(db_session).register(user, {"id": "x"}, "Y2hhbGxlbmdl")

    def test_verify_authentication_updates_counter(self, db_session, user):
        credential = add_credential(db_session, user)
        verified = SimpleNamespace(new_sign_count=5)
        with patch("shlink_ui.services.webauthn_service.verify_authentication_response", return_value=verified):
            ok = WebauthnService(db_session).verify_authentication(user, {"id": "cred-1"}, "Y2hhbGxlbmdl")
        assert ok
        assert credential.sign_count == 5
        assert credential.last_used_at is not None

    def test_unknown_credential_or_missing_challenge(self, db_session, user):
        add_credential(db_session, user)
        service = WebauthnService(db_session)
        assert not service.verify_authentication(user, {"id": "other"}, "Y2hhbGxlbmdl")
        assert not service.verify_authentication(user, {"id": "cred-1"}, None)

    def test_remove(self, db_session, user):
        credential = add_credential(db_session, user)
        service = WebauthnService(db_session)
        assert service.remove(user, credential.id)
        assert not service.remove(user, credential.id)


class TestAuthRoutes:
    def test_sign_up_queues_confirmation_mail(self, client, db_session, queue):
        response = client.post("/users/sign_up", json={
            "email": "new@example.com", "password": "longenough", "name": "New"
        })

        assert response.status_code == 201
        job = db_session.query(BackgroundJob).one()
        assert job.class_name == "MailDeliveryJob"
        assert "new@example.com" in job.arguments
        assert asyncio.run(queue.get_queue_length("mailers")) == 1

    def test_confirm_then_sign_in(self, client, db_session):
        client.post("/users/sign_up", json={"email": "c@example.com", "password": "longenough"})
        response = client.post("/users/sign_in", json={"email": "c@example.com", "password": "longenough"})
        assert response.status_code == 403

        token = db_session.query(User).filter_by(email="c@example.com").one().confirmation_token
        assert client.get("/users/confirmation", params={"token": token}).status_code == 200
        response = client.post("/users/sign_in", json={"email": "c@example.com", "password": "longenough"})
        assert response.status_code == 200
        assert response.json()["two_factor_required"] is False

    def test_sign_in_and_out(self, client, user):
        login(client, user.email)
        assert client.get("/users/me").json()["email"] == user.email

        client.delete("/users/sign_out")
        assert client.get("/users/me").status_code == 401

    def test_wrong_password(self, client, user):
        response = client.post("/users/sign_in", json={"email": user.email, "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Invalid email or password"}

    def test_lockout_over_http(self, client, user):
        for _ in range(4):
            client.post("/users/sign_in", json={"email": user.email, "password": "nope"})
        response = client.post("/users/sign_in", json={"email": user.email, "password": "nope"})
        assert response.status_code == 423

    def test_session_timeout(self, client, user):
        login(client, user.email)
        runtime.auth.session_timeout = -1
        assert client.get("/users/me").status_code == 401
        runtime.auth.session_timeout = 7200
        assert client.get("/users/me").status_code == 401

    def test_password_reset_flow(self, client, db_session, user):
        response = client.post("/users/password", json={"email": user.email})
        assert response.status_code == 200
        db_session.refresh(user)
        token = user.reset_password_token

        response = client.put("/users/password", json={"token": token, "password": "another-password"})
        assert response.status_code == 200
        login(client, user.email, "another-password")

    def test_password_reset_unknown_email_looks_the_same(self, client):
        response = client.post("/users/password", json={"email": "ghost@example.com"})
        assert response.status_code == 200
        assert response.json()["success"] is True


class TestTwoFactorRoutes:
    def test_totp_sign_in(self, client, db_session, user):
        secret, _ = enable_totp(db_session, user)

        response = client.post("/users/sign_in", json={"email": user.email, "password": PASSWORD})
        assert response.json()["two_factor_required"] is True
        assert response.json()["methods"] == {"totp": True, "webauthn": False}
        assert client.get("/users/me").status_code == 401

        bad = client.post("/users/two_factor_authentication/verify", json={"code": wrong_code(secret)})
        assert bad.status_code == 401

        response = client.post("/users/two_factor_authentication/verify",
                               json={"code": totp_at(secret, time.time())})
        assert response.status_code == 200
        assert client.get("/users/me").status_code == 200

    def test_backup_code_sign_in(self, client, db_session, user):
        _, codes = enable_totp(db_session, user)
        client.post("/users/sign_in", json={"email": user.email, "password": PASSWORD})

        response = client.post("/users/two_factor_authentication/verify", json={"backup_code": codes[1]})

        assert response.status_code == 200
        assert response.json()["remaining_backup_codes"] == BACKUP_CODE_COUNT - 1

    def test_verify_without_pending_sign_in(self, client):
        response = client.post("/users/two_factor_authentication/verify", json={"code": "123456"})
        assert response.status_code == 401

    def test_webauthn_sign_in(self, client, db_session, user):
        add_credential(db_session, user)
        client.post("/users/sign_in", json={"email": user.email, "password": PASSWORD})

        options = client.get("/users/two_factor_authentication/webauthn_options")
        assert options.status_code == 200
        assert options.json()["allowCredentials"]

        verified = SimpleNamespace(new_sign_count=2)
        with patch("shlink_ui.services.webauthn_service.verify_authentication_response", return_value=verified):
            response = client.post("/users/two_factor_authentication/verify",
                                   json={"credential": {"id": "cred-1"}})
        assert response.status_code == 200
        assert client.get("/users/me").status_code == 200

    def test_totp_management(self, user_client, db_session, user):
        setup = user_client.get("/users/two_factor_authentications").json()
        assert setup["enabled"] is False
        assert setup["provisioning_uri"].startswith("otpauth://")

        response = user_client.post("/users/two_factor_authentications",
                                    json={"code": totp_at(setup["secret"], time.time())})
        assert response.status_code == 200
        assert len(response.json()["backup_codes"]) == BACKUP_CODE_COUNT

        regenerated = user_client.post("/users/two_factor_authentications/backup_codes").json()
        assert regenerated["backup_codes"] != response.json()["backup_codes"]

        assert user_client.delete("/users/two_factor_authentications").status_code == 200
        db_session.refresh(user)
        assert not user.totp_enabled

    def test_webauthn_credential_management(self, user_client, db_session, user):
        options = user_client.get("/users/webauthn_credentials/options")
        assert options.status_code == 200

        verified = SimpleNamespace(credential_id=b"\x09\x09", credential_public_key=b"\x03", sign_count=0)
        with patch("shlink_ui.services.webauthn_service.verify_registration_response", return_value=verified):
            created = user_client.post("/users/webauthn_credentials",
                                       json={"credential": {"id": "x"}, "nickname": "YubiKey"})
        assert created.status_code == 201
        assert created.json()["nickname"] == "YubiKey"

        listed = user_client.get("/users/webauthn_credentials").json()
        assert [c["nickname"] for c in listed] == ["YubiKey"]

        assert user_client.delete(f"/users/webauthn_credentials/{listed[0]['id']}").status_code == 200
        assert user_client.delete(f"/users/webauthn_credentials/{listed[0]['id']}").status_code == 404

    def test_register_without_options(self, user_client):
        response = user_client.post("/users/webauthn_credentials", json={"credential": {"id": "x"}})
        assert response.status_code == 422

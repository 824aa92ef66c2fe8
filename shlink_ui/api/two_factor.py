"""
Second sign-in step and the 2FA management endpoints.

The WebAuthn challenge lives in the session between the options call
and the call that uses it, and is dropped after one use.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from shlink_ui.database.connection import get_db
from shlink_ui.dependencies import (
    client_ip,
    get_auth_service,
    get_current_user,
    get_pending_user,
    get_webauthn_service,
    rate_limit,
    sign_in,
)
from shlink_ui.models.user import User
from shlink_ui.schemas.auth import TotpCodeRequest, TwoFactorVerifyRequest, WebauthnRegisterRequest
from shlink_ui.services.auth_service import AuthService
from shlink_ui.services.totp_service import TotpService
from shlink_ui.services.webauthn_service import WebauthnError, WebauthnService

AUTHENTICATION_CHALLENGE = "webauthn_authentication_challenge"
REGISTRATION_CHALLENGE = "webauthn_registration_challenge"

router = APIRouter(prefix="/users", tags=["two-factor"])


@router.get("/two_factor_authentication/webauthn_options")
async def webauthn_options(
    request: Request,
    user: User = Depends(get_pending_user),
    webauthn: WebauthnService = Depends(get_webauthn_service),
):
    if not user.webauthn_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No security key registered"
        )
    options, challenge = webauthn.authentication_options(user)
    request.session[AUTHENTICATION_CHALLENGE] = challenge
    return options


@router.post("/two_factor_authentication/verify", dependencies=[Depends(rate_limit("login"))])
async def verify(
    data: TwoFactorVerifyRequest,
    request: Request,
    user: User = Depends(get_pending_user),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    webauthn: WebauthnService = Depends(get_webauthn_service),
):
    totp = TotpService(db, user)
    if data.credential is not None:
        challenge = request.session.pop(AUTHENTICATION_CHALLENGE, None)
        verified = webauthn.verify_authentication(user, data.credential, challenge)
    elif data.backup_code:
        verified = totp.verify_backup_code(data.backup_code)
    else:
        verified = user.totp_enabled and totp.verify_code(data.code)

    if not verified:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication code"
        )

    sign_in(request, user)
    auth.record_sign_in(user, client_ip(request))
    return {"success": True, "remaining_backup_codes": len(totp.backup_codes())}


@router.get("/two_factor_authentications")
async def totp_setup(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Secret, otpauth URI and QR code for the authenticator app."""
    totp = TotpService(db, user)
    secret = totp.get_or_create_secret()
    return {
        "enabled": user.totp_enabled,
        "secret": secret,
        "provisioning_uri": totp.provisioning_uri(),
        "qr_code_svg": totp.qr_code_svg(),
        "backup_codes_remaining": len(totp.backup_codes()),
    }


@router.post("/two_factor_authentications")
async def totp_enable(
    data: TotpCodeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    codes = TotpService(db, user).enable(data.code)
    if codes is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid authentication code"
        )
    return {"success": True, "backup_codes": codes}


@router.delete("/two_factor_authentications")
async def totp_disable(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    TotpService(db, user).disable()
    return {"success": True}


@router.post("/two_factor_authentications/backup_codes")
async def regenerate_backup_codes(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not user.totp_enabled:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Two-factor authentication is not enabled"
        )
    return {"success": True, "backup_codes": TotpService(db, user).generate_backup_codes()}


@router.get("/webauthn_credentials")
async def list_credentials(
    user: User = Depends(get_current_user),
    webauthn: WebauthnService = Depends(get_webauthn_service),
):
    return [WebauthnService.serialize(credential) for credential in webauthn.list(user)]


@router.get("/webauthn_credentials/options")
async def registration_options(
    request: Request,
    user: User = Depends(get_current_user),
    webauthn: WebauthnService = Depends(get_webauthn_service),
):
    options, challenge = webauthn.registration_options(user)
    request.session[REGISTRATION_CHALLENGE] = challenge
    return options


@router.post("/webauthn_credentials", status_code=status.HTTP_201_CREATED)
async def register_credential(
    data: WebauthnRegisterRequest,
    request: Request,
    user: User = Depends(get_current_user),
    webauthn: WebauthnService = Depends(get_webauthn_service),
):
    challenge = request.session.pop(REGISTRATION_CHALLENGE, None)
    if not challenge:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Registration options were not requested"
        )
    try:
        credential = webauthn.register(user, data.credential, challenge, data.nickname)
    except WebauthnError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return WebauthnService.serialize(credential)


@router.delete("/webauthn_credentials/{credential_id}")
async def delete_credential(
    credential_id: int,
    user: User = Depends(get_current_user),
    webauthn: WebauthnService = Depends(get_webauthn_service),
):
    if not webauthn.remove(user, credential_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Security key not found"
        )
    return {"success": True}

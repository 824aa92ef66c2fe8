from fastapi import APIRouter, Depends, HTTPException, Request, status

from shlink_ui.dependencies import (
    SESSION_PENDING_2FA_KEY,
    client_ip,
    get_account_mailer,
    get_auth_service,
    get_captcha_service,
    get_current_user,
    rate_limit,
    sign_in,
    sign_out,
)
from shlink_ui.models.user import User
from shlink_ui.schemas.auth import (
    AccountDeleteRequest,
    AccountUpdateRequest,
    PasswordResetRequest,
    PasswordUpdateRequest,
    RegistrationUpdateRequest,
    SignInRequest,
    SignUpRequest,
)
from shlink_ui.services.account_mailer import AccountMailer
from shlink_ui.services.auth_service import AuthService
from shlink_ui.services.captcha_service import CaptchaService

router = APIRouter(prefix="/users", tags=["auth"])
account_router = APIRouter(prefix="/account", tags=["account"])

RESET_SENT_MESSAGE = (
    "If your email address exists in our database, you will receive a "
    "password recovery link at your email address in a few minutes."
)


async def _check_captcha(captcha: CaptchaService, token, request: Request):
    result = await captcha.verify(token, client_ip(request))
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="CAPTCHA verification failed. Please try again."
        )


def _user_payload(user: User) -> dict:
    return {"id": user.id, "email": user.email, "name": user.name, "role": user.role}


@router.post("/sign_up", status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(rate_limit("login"))])
async def sign_up(
    data: SignUpRequest,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
    captcha: CaptchaService = Depends(get_captcha_service),
    mailer: AccountMailer = Depends(get_account_mailer),
):
    """Register and send the confirmation mail (through the job queue)."""
    await _check_captcha(captcha, data.captcha_token, request)
    if data.password_confirmation is not None and data.password_confirmation != data.password:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Password confirmation doesn't match Password"
        )
    user = auth.register(data.email, data.password, data.name)
    await mailer.confirmation_instructions(user)
    return {
        "success": True,
        "message": "A message with a confirmation link has been sent to your email address.",
        "user": _user_payload(user),
    }


@router.get("/confirmation")
async def confirm(token: str, auth: AuthService = Depends(get_auth_service)):
    user = auth.confirm(token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Confirmation token is invalid"
        )
    return {"success": True, "message": "Your email address has been successfully confirmed."}


@router.post("/sign_in", dependencies=[Depends(rate_limit("login"))])
async def sign_in_with_password(
    data: SignInRequest,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
    captcha: CaptchaService = Depends(get_captcha_service),
):
    """
    Password step of the sign-in.

    Users with TOTP or an active security key only get the pending
    marker here and finish at /users/two_factor_authentication/verify.
    """
    await _check_captcha(captcha, data.captcha_token, request)
    user = auth.authenticate(data.email, data.password)

    if user.requires_two_factor:
        request.session.clear()
        request.session[SESSION_PENDING_2FA_KEY] = user.id
        return {
            "success": True,
            "two_factor_required": True,
            "methods": {"totp": user.totp_enabled, "webauthn": user.webauthn_enabled},
        }

    sign_in(request, user)
    auth.record_sign_in(user, client_ip(request))
    return {"success": True, "two_factor_required": False, "user": _user_payload(user)}


@router.delete("/sign_out")
async def sign_out_user(request: Request):
    sign_out(request)
    return {"success": True, "message": "Signed out successfully."}


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return _user_payload(user)


@router.post("/password", dependencies=[Depends(rate_limit("login"))])
async def request_password_reset(
    data: PasswordResetRequest,
    auth: AuthService = Depends(get_auth_service),
    mailer: AccountMailer = Depends(get_account_mailer),
):
    user = auth.start_password_reset(data.email)
    if user is not None:
        await mailer.reset_password_instructions(user)
    return {"success": True, "message": RESET_SENT_MESSAGE}


@router.put("/password")
async def update_password(data: PasswordUpdateRequest, auth: AuthService = Depends(get_auth_service)):
    if data.password_confirmation is not None and data.password_confirmation != data.password:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Password confirmation doesn't match Password"
        )
    auth.reset_password(data.token, data.password)
    return {"success": True, "message": "Your password has been changed successfully."}


@router.put("")
async def update_registration(
    data: RegistrationUpdateRequest,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """Change name, e-mail or password; the session stays signed in."""
    password_changed = auth.update_account(
        user,
        name=data.name,
        email=data.email,
        password=data.password,
        password_confirmation=data.password_confirmation,
        current_password=data.current_password,
    )
    return {
        "success": True,
        "message": "Your account has been updated successfully.",
        "password_changed": password_changed,
        "user": _user_payload(user),
    }


@router.delete("")
async def destroy_registration(
    data: AccountDeleteRequest,
    request: Request,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.destroy_account(user, current_password=data.current_password, delete_confirmation=data.delete_confirmation)
    sign_out(request)
    return {"success": True, "message": "Your account has been successfully cancelled."}


def _account_payload(user: User) -> dict:
    return {
        **_user_payload(user),
        "theme_preference": user.theme_preference,
        "from_oauth": user.from_oauth,
        "has_password": user.has_password,
        "totp_enabled": user.totp_enabled,
        "webauthn_enabled": user.webauthn_enabled,
        "created_at": user.created_at,
    }


@account_router.get("")
async def show_account(user: User = Depends(get_current_user)):
    return _account_payload(user)


@account_router.patch("")
async def update_account_settings(
    data: AccountUpdateRequest,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    auth.update_profile(user, name=data.name, theme_preference=data.theme_preference)
    return {"success": True, "message": "Settings updated.", "theme": user.theme_preference}

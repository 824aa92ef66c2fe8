from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SignUpRequest(BaseModel):
    email: str
    password: str
    password_confirmation: Optional[str] = None
    name: Optional[str] = Field(None, max_length=255)
    captcha_token: Optional[str] = None


class SignInRequest(BaseModel):
    email: str
    password: str
    captcha_token: Optional[str] = None


class OAuthIdentity(BaseModel):
    provider: str
    uid: str
    email: str
    name: Optional[str] = None


class PasswordResetRequest(BaseModel):
    email: str


class PasswordUpdateRequest(BaseModel):
    token: str
    password: str
    password_confirmation: Optional[str] = None


class TwoFactorVerifyRequest(BaseModel):
    """Exactly one of the three factors is expected."""

    code: Optional[str] = None
    backup_code: Optional[str] = None
    credential: Optional[Dict[str, Any]] = None


class TotpCodeRequest(BaseModel):
    code: str


class WebauthnRegisterRequest(BaseModel):
    credential: Dict[str, Any]
    nickname: Optional[str] = Field(None, max_length=255)


class AccountUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    theme_preference: Optional[str] = None


class RegistrationUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = None
    password: Optional[str] = None
    password_confirmation: Optional[str] = None
    current_password: Optional[str] = None


class AccountDeleteRequest(BaseModel):
    """Password users send current_password, OAuth users delete_confirmation."""

    current_password: Optional[str] = None
    delete_confirmation: Optional[str] = None

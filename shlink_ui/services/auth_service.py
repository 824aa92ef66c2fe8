"""
Password sign-in, registration, confirmation and password reset.

The lockout policy (attempts, lock duration) and the password length
come from runtime_config.runtime.auth, which follows the security.*
settings.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from shlink_ui.clock import utcnow
from shlink_ui.models.user import ROLE_NORMAL_USER, THEMES, User
from shlink_ui.services.runtime_config import runtime

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

RESET_PASSWORD_WITHIN = timedelta(hours=6)
DELETE_CONFIRMATION = "DELETE"


class AuthError(Exception):
    """Sign-in or account operation refused; message is safe to show."""

    status_code = 401

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AccountLockedError(AuthError):
    status_code = 423


class UnconfirmedAccountError(AuthError):
    status_code = 403


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        return False


class AuthService:
    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def validate_password(self, password: str):
        minimum = runtime.auth.password_min_length
        if len(password or "") < minimum:
            raise AuthError(f"Password is too short (minimum is {minimum} characters)", 422)

    def register(self, email: str, password: str, name: Optional[str] = None) -> User:
        email = email.strip().lower()
        self.validate_password(password)
        if self.find_by_email(email):
            raise AuthError("Email has already been taken", 422)

        user = User(
            email=email,
            encrypted_password=hash_password(password),
            name=name,
            role=ROLE_NORMAL_USER,
            confirmation_token=secrets.token_urlsafe(24),
            confirmation_sent_at=utcnow(),
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Registered user %s", user.id)
        return user

    def confirm(self, token: str) -> Optional[User]:
        if not token:
            return None
        user = self.db.query(User).filter(User.confirmation_token == token).first()
        if user is None:
            return None
        user.confirmed_at = utcnow()
        user.confirmation_token = None
        self.db.commit()
        return user

    def is_locked(self, user: User) -> bool:
        if user.locked_at is None:
            return False
        if user.locked_at + timedelta(minutes=runtime.auth.lockout_minutes) > utcnow():
            return True
        # Lock expired
        user.locked_at = None
        user.failed_attempts = 0
        self.db.commit()
        return False

    def authenticate(self, email: str, password: str) -> User:
        """
        Check credentials and return the user.

        Unknown email and wrong password give the same message. Each wrong
        password counts towards the lockout.
        """
        user = self.find_by_email(email or "")
        if user is None:
            raise AuthError("Invalid email or password")

        if self.is_locked(user):
            raise AccountLockedError("Your account is locked")

        if not verify_password(password or "", user.encrypted_password):
            user.failed_attempts = (user.failed_attempts or 0) + 1
            if user.failed_attempts >= runtime.auth.max_login_attempts:
                user.locked_at = utcnow()
                self.db.commit()
                logger.warning("Locked user %s after %s failed attempts", user.id, user.failed_attempts)
                raise AccountLockedError("Your account is locked")
            self.db.commit()
            raise AuthError("Invalid email or password")

        if not user.is_confirmed:
            raise UnconfirmedAccountError("You have to confirm your email address before continuing")

        return user

    def record_sign_in(self, user: User, ip: Optional[str]):
        now = utcnow()
        user.last_sign_in_at = user.current_sign_in_at or now
        user.last_sign_in_ip = user.current_sign_in_ip or ip
        user.current_sign_in_at = now
        user.current_sign_in_ip = ip
        user.sign_in_count = (user.sign_in_count or 0) + 1
        user.failed_attempts = 0
        self.db.commit()

    def unlock(self, user: User):
        user.locked_at = None
        user.failed_attempts = 0
        self.db.commit()

    def start_password_reset(self, email: str) -> Optional[User]:
        user = self.find_by_email(email or "")
        if user is None:
            return None
        user.reset_password_token = secrets.token_urlsafe(24)
        user.reset_password_sent_at = utcnow()
        self.db.commit()
        return user

    def reset_password(self, token: str, password: str) -> User:
        user = self.db.query(User).filter(User.reset_password_token == token).first() if token else None
        if user is None or user.reset_password_sent_at is None:
            raise AuthError("Reset password token is invalid", 422)
        if user.reset_password_sent_at + RESET_PASSWORD_WITHIN < utcnow():
            raise AuthError("Reset password token has expired, please request a new one", 422)
        self.validate_password(password)
        user.encrypted_password = hash_password(password)
        user.reset_password_token = None
        user.reset_password_sent_at = None
        user.locked_at = None
        user.failed_attempts = 0
        self.db.commit()
        return user

    def from_oauth(self, provider: str, uid: str, email: str, name: Optional[str] = None) -> User:
        """
        Find the user for an OAuth identity or create a confirmed one.

        Matching is by e-mail, so an existing password account is reused.
        """
        email = email.strip().lower()
        user = self.find_by_email(email)
        if user is not None:
            return user
        if not name:
            raise AuthError("Name can't be blank", 422)
        user = User(
            email=email,
            encrypted_password="",
            name=name,
            provider=provider,
            uid=uid,
            role=ROLE_NORMAL_USER,
            confirmed_at=utcnow(),
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        logger.info("Created user %s from %s", user.id, provider)
        return user

    # Account self-service

    def update_profile(self, user: User, name: Optional[str] = None, theme_preference: Optional[str] = None) -> User:
        if theme_preference is not None:
            if theme_preference not in THEMES:
                raise AuthError(f"Theme preference must be one of: {', '.join(THEMES)}", 422)
            user.theme_preference = theme_preference
        if name is not None:
            name = name.strip()
            if not name and user.from_oauth:
                raise AuthError("Name can't be blank", 422)
            user.name = name or None
        self.db.commit()
        return user

    def update_account(
        self,
        user: User,
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        password_confirmation: Optional[str] = None,
        current_password: Optional[str] = None,
    ) -> bool:
        """
        Change name, e-mail or password. Returns whether the password changed.

        A new password needs the current one, except for an OAuth user who
        never set one. OAuth users keep the e-mail of their provider.
        """
        if email:
            email = email.strip().lower()
            if email != user.email:
                if user.from_oauth:
                    raise AuthError("OAuth users cannot change their email address", 422)
                taken = self.find_by_email(email)
                if taken is not None and taken.id != user.id:
                    raise AuthError("Email has already been taken", 422)

        if password:
            if user.has_password and not verify_password(current_password or "", user.encrypted_password):
                raise AuthError("Current password is invalid", 422)
            if password_confirmation is not None and password_confirmation != password:
                raise AuthError("Password confirmation doesn't match Password", 422)
            self.validate_password(password)

        if name is not None:
            name = name.strip()
            if not name and user.from_oauth:
                raise AuthError("Name can't be blank", 422)
            user.name = name or None
        if email:
            user.email = email
        if password:
            user.encrypted_password = hash_password(password)
        self.db.commit()
        logger.info("User %s updated their account", user.id)
        return bool(password)

    def destroy_account(
        self,
        user: User,
        current_password: Optional[str] = None,
        delete_confirmation: Optional[str] = None,
    ):
        """
        Delete the user with their short URLs and security keys.

        Password users confirm with their password, OAuth users by typing
        DELETE_CONFIRMATION.
        """
        if user.from_oauth:
            if (delete_confirmation or "").strip() != DELETE_CONFIRMATION:
                raise AuthError(f'Type "{DELETE_CONFIRMATION}" to confirm the deletion', 422)
        elif not verify_password(current_password or "", user.encrypted_password):
            raise AuthError("Current password is invalid", 422)
        user_id = user.id
        self.db.delete(user)
        self.db.commit()
        logger.info("User %s deleted their account", user_id)

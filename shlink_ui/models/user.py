import secrets

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from shlink_ui.database.connection import Base

ROLE_ADMIN = "admin"
ROLE_NORMAL_USER = "normal_user"
ROLES = (ROLE_NORMAL_USER, ROLE_ADMIN)

THEMES = ("light", "dark", "system")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("provider", "uid", name="uq_users_provider_uid"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    encrypted_password = Column(String(255), nullable=False, default="")
    name = Column(String(255))
    role = Column(String(32), nullable=False, default=ROLE_NORMAL_USER, index=True)
    theme_preference = Column(String(16), nullable=False, default="system")

    # OAuth identity
    provider = Column(String(64))
    uid = Column(String(255))

    # Confirmation / password reset
    confirmation_token = Column(String(255), unique=True)
    confirmation_sent_at = Column(DateTime)
    confirmed_at = Column(DateTime)
    reset_password_token = Column(String(255), unique=True)
    reset_password_sent_at = Column(DateTime)

    # Sign-in tracking and lockout
    sign_in_count = Column(Integer, nullable=False, default=0)
    current_sign_in_at = Column(DateTime)
    last_sign_in_at = Column(DateTime)
    current_sign_in_ip = Column(String(64))
    last_sign_in_ip = Column(String(64))
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_at = Column(DateTime)

    # Two-factor authentication
    otp_secret_key = Column(Text)  # signed
    otp_required_for_login = Column(Boolean, nullable=False, default=False)
    otp_backup_codes = Column(Text)  # signed JSON list
    otp_backup_codes_generated_at = Column(DateTime)
    webauthn_id = Column(String(128), unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    short_urls = relationship(
        "ShortUrl", back_populates="user", cascade="all, delete-orphan", lazy="dynamic"
    )
    webauthn_credentials = relationship(
        "WebauthnCredential", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None

    @property
    def from_oauth(self) -> bool:
        return bool(self.provider and self.uid)

    @property
    def has_password(self) -> bool:
        # OAuth sign-ups start without one
        return bool(self.encrypted_password)

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]

    @property
    def active_webauthn_credentials(self) -> list:
        return [c for c in self.webauthn_credentials if c.active]

    @property
    def totp_enabled(self) -> bool:
        return bool(self.otp_required_for_login and self.otp_secret_key)

    @property
    def webauthn_enabled(self) -> bool:
        return bool(self.active_webauthn_credentials)

    @property
    def requires_two_factor(self) -> bool:
        # OAuth users already passed the provider's own checks
        if self.from_oauth:
            return False
        return self.totp_enabled or self.webauthn_enabled

    def ensure_webauthn_id(self) -> str:
        if not self.webauthn_id:
            self.webauthn_id = secrets.token_urlsafe(32)
        return self.webauthn_id

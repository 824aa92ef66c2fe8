from datetime import timedelta

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from shlink_ui.clock import utcnow
from shlink_ui.database.connection import Base


class WebauthnCredential(Base):
    __tablename__ = "webauthn_credentials"
    __table_args__ = (UniqueConstraint("user_id", "nickname", name="uq_webauthn_user_nickname"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    external_id = Column(String(512), unique=True, nullable=False)  # base64url credential id
    public_key = Column(Text, nullable=False)  # base64url COSE key
    sign_count = Column(Integer, nullable=False, default=0)
    nickname = Column(String(255), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="webauthn_credentials")

    @property
    def security_level(self) -> str:
        if self.sign_count > 0 and self.last_used_at and self.last_used_at > utcnow() - timedelta(days=30):
            return "high"
        if self.sign_count > 0:
            return "medium"
        return "low"

import json
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from shlink_ui.clock import utcnow
from shlink_ui.database.connection import Base


class ShortUrl(Base):
    """
    Local mirror of a short URL that lives in Shlink.

    The Shlink API is the source of truth. This table only caches what a
    user created through this app so that listing, searching and the
    overall statistics do not need a round trip. Visit counts are refreshed
    by the sync service.
    """
    __tablename__ = "short_urls"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    # unique=True also creates the index
    short_code = Column(String(255), unique=True, nullable=False, index=True)
    short_url = Column(String(2048), nullable=False)
    long_url = Column(Text, nullable=False)
    domain = Column(String(255))
    title = Column(String(512))
    tags = Column(Text)  # JSON array
    meta = Column(Text)  # JSON object
    visit_count = Column(Integer, nullable=False, default=0)
    valid_since = Column(DateTime)
    valid_until = Column(DateTime)
    max_visits = Column(Integer)
    crawlable = Column(Boolean, nullable=False, default=True)
    forward_query = Column(Boolean, nullable=False, default=True)
    date_created = Column(DateTime, nullable=False, default=utcnow)
    deleted_at = Column(DateTime, index=True)  # soft delete
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="short_urls")

    @property
    def tags_list(self) -> list:
        if not self.tags:
            return []
        try:
            value = json.loads(self.tags)
        except ValueError:
            return []
        return value if isinstance(value, list) else []

    @tags_list.setter
    def tags_list(self, value):
        self.tags = json.dumps(list(value or []))

    @property
    def meta_dict(self) -> dict:
        if not self.meta:
            return {}
        try:
            value = json.loads(self.meta)
        except ValueError:
            return {}
        return value if isinstance(value, dict) else {}

    @meta_dict.setter
    def meta_dict(self, value):
        self.meta = json.dumps(value or {})

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_expired(self) -> bool:
        return self.valid_until is not None and self.valid_until < utcnow()

    @property
    def remaining_visits(self) -> Optional[int]:
        if self.max_visits is None:
            return None
        return max(self.max_visits - (self.visit_count or 0), 0)

    @property
    def visit_limit_reached(self) -> bool:
        return self.max_visits is not None and self.remaining_visits <= 0

    @property
    def is_active(self) -> bool:
        """Not soft-deleted, not expired and below its visit cap."""
        return not self.is_deleted and not self.is_expired and not self.visit_limit_reached

    @property
    def visit_display(self) -> str:
        if self.max_visits is not None:
            return f"{self.visit_count}/{self.max_visits}"
        return str(self.visit_count)

    def soft_delete(self):
        self.deleted_at = utcnow()

    @classmethod
    def live(cls, query):
        """Restrict a query to rows that are not soft-deleted."""
        return query.filter(cls.deleted_at.is_(None))

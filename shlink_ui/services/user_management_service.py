"""
Admin user management: listing, per-user statistics, edits and deletion.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from shlink_ui.clock import today, utcnow
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import ROLE_ADMIN, ROLE_NORMAL_USER, ROLES, User

logger = logging.getLogger(__name__)

PAGE_SIZE = 20


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def truncate_url(url: Optional[str], length: int = 50) -> Optional[str]:
    if url is None or len(url) <= length:
        return url
    return url[: length - 3] + "..."


class UserManagementService:
    def __init__(self, db: Session):
        self.db = db

    def list_users(
        self, page: int = 1, search: Optional[str] = None, role: Optional[str] = None
    ) -> Tuple[List[User], int]:
        query = self.db.query(User)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(User.name.like(pattern), User.email.like(pattern)))
        if role:
            query = query.filter(User.role == role)
        total = query.count()
        users = query.order_by(User.id).offset((max(page, 1) - 1) * PAGE_SIZE).limit(PAGE_SIZE).all()
        return users, total

    def visit_counts(self, user_ids: List[int]) -> Dict[int, int]:
        if not user_ids:
            return {}
        rows = (
            self.db.query(ShortUrl.user_id, func.coalesce(func.sum(ShortUrl.visit_count), 0))
            .filter(ShortUrl.user_id.in_(user_ids))
            .group_by(ShortUrl.user_id)
            .all()
        )
        return {user_id: int(total) for user_id, total in rows}

    def role_counts(self) -> Dict[str, int]:
        return {
            "total_users": self.db.query(User).count(),
            "admin_users": self.db.query(User).filter(User.role == ROLE_ADMIN).count(),
            "normal_users": self.db.query(User).filter(User.role == ROLE_NORMAL_USER).count(),
        }

    def get(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def update(self, user: User, name: Optional[str] = None, email: Optional[str] = None,
               role: Optional[str] = None) -> User:
        if email is not None:
            email = email.strip().lower()
            clash = self.db.query(User).filter(User.email == email, User.id != user.id).first()
            if not email or clash:
                raise ValueError("Email is invalid or already taken")
            user.email = email
        if name is not None:
            user.name = name
        if role:
            if role not in ROLES:
                raise ValueError(f"Unknown role: {role}")
            user.role = role
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete(self, user: User):
        user_id = user.id
        self.db.delete(user)
        self.db.commit()
        logger.info("Deleted user %s", user_id)

    def statistics(self, user: User) -> Dict[str, Any]:
        urls = user.short_urls
        now = utcnow()
        popular = urls.order_by(ShortUrl.visit_count.desc()).first()
        tags = sorted({tag for url in urls for tag in url.tags_list})
        return {
            "basic_info": {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "role": user.role,
                "provider": user.provider,
                "created_at": _iso(user.created_at),
                "confirmed_at": _iso(user.confirmed_at),
                "confirmed": user.is_confirmed,
                "locked": user.locked_at is not None,
            },
            "activity": {
                "sign_in_count": user.sign_in_count,
                "current_sign_in_at": _iso(user.current_sign_in_at),
                "last_sign_in_at": _iso(user.last_sign_in_at),
                "current_sign_in_ip": user.current_sign_in_ip,
                "last_sign_in_ip": user.last_sign_in_ip,
                "days_since_last_login": (
                    (today() - user.last_sign_in_at.date()).days if user.last_sign_in_at else None
                ),
            },
            "short_urls": {
                "total_short_urls": urls.count(),
                "total_visits": sum(url.visit_count or 0 for url in urls),
                "created_this_month": urls.filter(ShortUrl.date_created >= now - timedelta(days=30)).count(),
                "created_this_week": urls.filter(ShortUrl.date_created >= now - timedelta(days=7)).count(),
                "most_popular_url": self.url_summary(popular) if popular else None,
                "recent_urls": [
                    self.url_summary(url)
                    for url in urls.order_by(ShortUrl.date_created.desc()).limit(5)
                ],
                "tags_used": tags,
            },
            "security": {
                "two_factor_enabled": user.totp_enabled or user.webauthn_enabled,
                "totp_enabled": user.totp_enabled,
                "webauthn_enabled": user.webauthn_enabled,
                "webauthn_credentials_count": len(user.webauthn_credentials),
                "failed_attempts": user.failed_attempts or 0,
                "oauth_user": user.from_oauth,
            },
        }

    @staticmethod
    def url_summary(url: ShortUrl) -> Dict[str, Any]:
        return {
            "short_code": url.short_code,
            "short_url": url.short_url,
            "long_url": truncate_url(url.long_url),
            "visit_count": url.visit_count,
            "date_created": _iso(url.date_created),
        }

    @staticmethod
    def serialize(user: User, visit_count: int = 0) -> Dict[str, Any]:
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "display_name": user.display_name,
            "role": user.role,
            "confirmed": user.is_confirmed,
            "locked": user.locked_at is not None,
            "visit_count": visit_count,
            "created_at": _iso(user.created_at),
        }

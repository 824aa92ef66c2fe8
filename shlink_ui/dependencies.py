"""
FastAPI dependencies for dependency injection.

Cache and queue are process-wide singletons (lru_cache around the
factories). Everything that needs a database session is built per
request from get_db, so tests can swap any piece with
app.dependency_overrides.
"""

import logging
import time
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from shlink_ui.cache.factory import CacheBackend, CacheFactory
from shlink_ui.cache.strategies import CacheStrategy
from shlink_ui.config import settings
from shlink_ui.database.connection import get_db
from shlink_ui.models.user import User
from shlink_ui.queue.factory import QueueBackend, QueueFactory
from shlink_ui.queue.strategies import QueueStrategy
from shlink_ui.services.app_config import AppConfig
from shlink_ui.services.rate_limiter import RATE_LIMITS, RateLimiter
from shlink_ui.services.runtime_config import runtime
from shlink_ui.services.settings_store import SettingsStore
from shlink_ui.services.shlink_client import ShlinkClient

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"
SESSION_PENDING_2FA_KEY = "user_pending_2fa_id"
SESSION_LAST_SEEN_KEY = "last_seen"


@lru_cache()
def get_cache() -> CacheStrategy:
    """Get cache instance (singleton)."""
    backend = CacheBackend(settings.cache_backend)
    return CacheFactory.create(backend)


@lru_cache()
def get_queue() -> QueueStrategy:
    """Get queue instance (singleton)."""
    backend = QueueBackend(settings.queue_backend)
    return QueueFactory.create(backend)


def get_shlink_client() -> ShlinkClient:
    return ShlinkClient()


def get_settings_store(db: Session = Depends(get_db)) -> SettingsStore:
    return SettingsStore(db)


def get_app_config(
    store: SettingsStore = Depends(get_settings_store),
    cache: CacheStrategy = Depends(get_cache),
) -> AppConfig:
    return AppConfig(store, cache=cache)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def sign_in(request: Request, user: User):
    request.session.pop(SESSION_PENDING_2FA_KEY, None)
    request.session[SESSION_USER_KEY] = user.id
    request.session[SESSION_LAST_SEEN_KEY] = int(time.time())


def sign_out(request: Request):
    request.session.clear()


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """
    The signed-in user, or None.

    A session idle for longer than the security.session_timeout setting
    is cleared.
    """
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        return None

    now = int(time.time())
    last_seen = request.session.get(SESSION_LAST_SEEN_KEY) or now
    if now - last_seen > runtime.auth.session_timeout:
        logger.info("Session for user %s timed out", user_id)
        sign_out(request)
        return None

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        sign_out(request)
        return None
    request.session[SESSION_LAST_SEEN_KEY] = now
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    return user


def get_pending_user(request: Request, db: Session = Depends(get_db)) -> User:
    """The user who passed the password step and still owes a second factor."""
    user_id = request.session.get(SESSION_PENDING_2FA_KEY)
    user = db.query(User).filter(User.id == user_id).first() if user_id is not None else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No sign-in awaiting two-factor verification"
        )
    return user


async def require_admin(
    user: User = Depends(get_current_user),
    config: AppConfig = Depends(get_app_config),
) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required"
        )
    if await config.enabled("security.require_2fa_for_admin", False) and not user.requires_two_factor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Two-factor authentication must be enabled for administrators"
        )
    return user


def rate_limit(name: str):
    """
    Dependency enforcing one of the fixed-window limits in RATE_LIMITS
    for the client IP. Answers 429 with Retry-After once the quota is used.
    """
    setting_key, default_quota, per_seconds = RATE_LIMITS[name]

    async def dependency(
        request: Request,
        cache: CacheStrategy = Depends(get_cache),
        config: AppConfig = Depends(get_app_config),
    ):
        if not settings.rate_limit_enabled:
            return
        if not await config.enabled("rate_limit.enabled", True):
            return
        quota = await config.number(setting_key, default_quota)
        result = await RateLimiter(cache).hit(name, client_ip(request), quota, per_seconds)
        if not result.allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(result.retry_after)},
            )

    return dependency


def get_short_url_service(
    db: Session = Depends(get_db),
    client: ShlinkClient = Depends(get_shlink_client),
    config: AppConfig = Depends(get_app_config),
    cache: CacheStrategy = Depends(get_cache),
):
    from shlink_ui.services.short_url_service import ShortUrlService
    return ShortUrlService(db=db, client=client, config=config, cache=cache)


def get_sync_service(
    db: Session = Depends(get_db),
    client: ShlinkClient = Depends(get_shlink_client),
):
    from shlink_ui.services.sync_service import ShlinkSyncService
    return ShlinkSyncService(db, client)


def get_individual_statistics_service(
    db: Session = Depends(get_db),
    client: ShlinkClient = Depends(get_shlink_client),
    cache: CacheStrategy = Depends(get_cache),
):
    from shlink_ui.services.statistics_service import IndividualUrlStatisticsService
    return IndividualUrlStatisticsService(db, client, cache=cache, tz=runtime.timezone)


def get_overall_statistics_service(
    db: Session = Depends(get_db),
    client: ShlinkClient = Depends(get_shlink_client),
    cache: CacheStrategy = Depends(get_cache),
):
    from shlink_ui.services.statistics_service import OverallStatisticsService
    return OverallStatisticsService(db, client, cache=cache, tz=runtime.timezone)


def get_job_service(
    db: Session = Depends(get_db),
    queue: QueueStrategy = Depends(get_queue),
):
    from shlink_ui.services.job_service import JobService
    return JobService(db, queue)


def get_account_mailer(
    jobs=Depends(get_job_service),
    config: AppConfig = Depends(get_app_config),
):
    from shlink_ui.services.account_mailer import AccountMailer
    return AccountMailer(jobs, config)


def get_captcha_service(config: AppConfig = Depends(get_app_config)):
    from shlink_ui.services.captcha_service import CaptchaService
    return CaptchaService(config)


def get_auth_service(db: Session = Depends(get_db)):
    from shlink_ui.services.auth_service import AuthService
    return AuthService(db)


def get_webauthn_service(db: Session = Depends(get_db)):
    from shlink_ui.services.webauthn_service import WebauthnService
    return WebauthnService(db)


def get_legal_documents(store: SettingsStore = Depends(get_settings_store)):
    from shlink_ui.services.legal_documents import LegalDocuments
    return LegalDocuments(store)

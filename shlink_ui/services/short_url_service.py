import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from shlink_ui.cache.strategies import CacheStrategy
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import User
from shlink_ui.schemas.short_url import EditShortUrlRequest, ShortenRequest, ShortUrlResponse
from shlink_ui.services.app_config import AppConfig
from shlink_ui.services.shlink_client import CLEAR, ShlinkClient
from shlink_ui.services.sync_service import attributes_from_remote

logger = logging.getLogger(__name__)

STATISTICS_CACHE_PREFIXES = ("user_statistics:{user_id}:", "individual_url_statistics:{user_id}:")


class ShortUrlError(Exception):
    """A request the Shlink API was never asked to handle (local rule violated)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def domain_allowed(long_url: str, allowed: List[str]) -> bool:
    """An empty allow-list accepts everything; entries also match subdomains."""
    if not allowed:
        return True
    host = (urlparse(long_url).hostname or "").lower()
    for domain in allowed:
        domain = str(domain).strip().lower().lstrip(".")
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    return False


class ShortUrlService:
    """
    Short URL operations for one signed-in user.

    Shlink is called first; the local ShortUrl row is only written after
    Shlink accepted the change, so the two never disagree on success.
    """

    def __init__(
        self,
        db: Session,
        client: ShlinkClient,
        config: AppConfig,
        cache: Optional[CacheStrategy] = None,
    ):
        self.db = db
        self.client = client
        self.config = config
        self.cache = cache

    def find(self, user: User, short_code: str) -> Optional[ShortUrl]:
        """The user's live short URL with that code, or None."""
        return ShortUrl.live(
            self.db.query(ShortUrl).filter(
                ShortUrl.user_id == user.id, ShortUrl.short_code == short_code
            )
        ).first()

    async def create(self, user: User, request: ShortenRequest) -> ShortUrl:
        long_url = str(request.long_url)

        allowed = await self.config.array("system.allowed_domains", [])
        if not domain_allowed(long_url, allowed):
            raise ShortUrlError("This domain is not allowed")

        limit = await self.config.number("performance.max_short_urls_per_user", 1000)
        owned = ShortUrl.live(self.db.query(ShortUrl).filter(ShortUrl.user_id == user.id)).count()
        if limit and owned >= limit:
            raise ShortUrlError(f"You can create at most {limit} short URLs")

        result = self.client.create_short_url(
            long_url,
            custom_slug=request.slug,
            valid_until=request.valid_until,
            max_visits=request.max_visits,
            tags=request.tags,
            title=request.title,
        )

        attributes = attributes_from_remote(result)
        attributes["visit_count"] = 0
        short_url = self.db.query(ShortUrl).filter(
            ShortUrl.short_code == attributes["short_code"]
        ).first()
        if short_url is None:
            short_url = ShortUrl(user_id=user.id)
            self.db.add(short_url)
        short_url.user_id = user.id
        short_url.deleted_at = None
        for field, value in attributes.items():
            setattr(short_url, field, value)
        self.db.commit()
        self.db.refresh(short_url)

        logger.info("User %s created short URL %s", user.id, short_url.short_code)
        await self.invalidate_statistics(user)
        return short_url

    async def update(self, user: User, short_code: str, request: EditShortUrlRequest) -> Optional[ShortUrl]:
        short_url = self.find(user, short_code)
        if short_url is None:
            return None

        custom_slug = request.custom_slug
        if custom_slug == short_code:
            custom_slug = None

        result = self.client.update_short_url(
            short_code,
            title=request.title,
            long_url=str(request.long_url) if request.long_url else None,
            tags=request.tags,
            valid_until=request.valid_until,
            max_visits=request.max_visits,
            custom_slug=custom_slug,
        )

        if result:
            attributes = attributes_from_remote(result)
            for field in ("short_code", "short_url", "long_url", "title", "tags", "meta",
                          "valid_since", "valid_until", "max_visits", "crawlable", "forward_query"):
                if field in ("short_code", "short_url", "long_url") and not attributes[field]:
                    continue
                setattr(short_url, field, attributes[field])
        else:
            self._apply_locally(short_url, request, custom_slug)

        self.db.commit()
        self.db.refresh(short_url)
        logger.info("User %s updated short URL %s", user.id, short_code)
        await self.invalidate_statistics(user)
        return short_url

    @staticmethod
    def _apply_locally(short_url: ShortUrl, request: EditShortUrlRequest, custom_slug: Optional[str]):
        # Shlink answered without a body
        if request.title:
            short_url.title = request.title
        if request.long_url:
            short_url.long_url = str(request.long_url)
        if request.tags is not None:
            short_url.tags_list = request.tags
        if request.valid_until == CLEAR:
            short_url.valid_until = None
        elif request.valid_until is not None:
            value = request.valid_until
            short_url.valid_until = value if value.tzinfo is None else value.replace(tzinfo=None) - value.utcoffset()
        if request.max_visits == CLEAR:
            short_url.max_visits = None
        elif request.max_visits is not None:
            short_url.max_visits = int(request.max_visits)
        if custom_slug:
            short_url.short_url = short_url.short_url[: -len(short_url.short_code)] + custom_slug
            short_url.short_code = custom_slug

    async def delete(self, user: User, short_code: str) -> Optional[ShortUrlResponse]:
        """
        Delete on Shlink, then remove the local row for good.

        Returns a snapshot of the removed record or None when the user does
        not own the code. ShlinkError propagates and leaves the row alone.
        """
        short_url = (
            self.db.query(ShortUrl)
            .filter(ShortUrl.user_id == user.id, ShortUrl.short_code == short_code)
            .first()
        )
        if short_url is None:
            return None

        self.client.delete_short_url(short_code)
        removed = ShortUrlResponse.model_validate(short_url)
        self.db.delete(short_url)
        self.db.commit()

        logger.info("Deleted short URL %s for user %s", short_code, user.id)
        await self.invalidate_statistics(user)
        return removed

    async def list_for_user(self, user: User, page: int = 1, search: Optional[str] = None) -> Dict[str, Any]:
        """Paginated, searchable listing plus totals over all live URLs."""
        per_page = await self.config.number("performance.items_per_page", 20) or 20
        page = max(int(page or 1), 1)

        base = ShortUrl.live(self.db.query(ShortUrl).filter(ShortUrl.user_id == user.id))
        query = base
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                ShortUrl.title.like(pattern),
                ShortUrl.long_url.like(pattern),
                ShortUrl.short_code.like(pattern),
                ShortUrl.tags.like(pattern),
            ))

        total = query.count()
        items = (
            query.order_by(ShortUrl.date_created.desc(), ShortUrl.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )

        all_urls = base.all()
        total_visits = (
            base.with_entities(func.coalesce(func.sum(ShortUrl.visit_count), 0)).scalar() or 0
        )
        return {
            "short_urls": items,
            "search": search,
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "pages": (total + per_page - 1) // per_page,
            },
            "totals": {
                "total_urls": len(all_urls),
                "total_visits": int(total_visits),
                "active_urls": sum(1 for url in all_urls if url.is_active),
            },
        }

    def qr_code(self, short_code: str, size: int = 300, format: str = "png") -> Dict[str, Any]:
        return self.client.get_qr_code(short_code, size=size, format=format)

    def redirect_rules(self, short_code: str) -> Dict[str, Any]:
        return self.client.get_redirect_rules(short_code)

    def set_redirect_rules(self, short_code: str, rules: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self.client.set_redirect_rules(short_code, rules)

    async def invalidate_statistics(self, user: User):
        if not self.cache:
            return
        for prefix in STATISTICS_CACHE_PREFIXES:
            await self.cache.delete_prefix(prefix.format(user_id=user.id))

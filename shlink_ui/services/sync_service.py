"""
Reconcile a user's locally cached short URLs with Shlink.

Only URLs the user already owns locally are refreshed; the sync never
discovers new ones. A local URL that Shlink no longer knows is
soft-deleted, but only after a direct lookup confirms it is gone.
"""

import json
import logging
from typing import Any, Dict, Optional, Set

from sqlalchemy.orm import Session

from shlink_ui.clock import parse_datetime, utcnow
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import User
from shlink_ui.services.shlink_client import ShlinkClient, ShlinkError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def attributes_from_remote(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map one Shlink short URL payload onto ShortUrl column values."""
    meta = data.get("meta") or {}
    tags = data.get("tags")
    return {
        "short_code": data.get("shortCode"),
        "short_url": data.get("shortUrl"),
        "long_url": data.get("longUrl"),
        "domain": data.get("domain"),
        "title": data.get("title"),
        "tags": json.dumps(tags) if tags is not None else None,
        "meta": json.dumps(meta) if data.get("meta") is not None else None,
        "visit_count": (data.get("visitsSummary") or {}).get("total") or 0,
        "valid_since": parse_datetime(meta.get("validSince")),
        "valid_until": parse_datetime(meta.get("validUntil")),
        "max_visits": meta.get("maxVisits"),
        "crawlable": data.get("crawlable") is not False,
        "forward_query": data.get("forwardQuery") is not False,
        "date_created": parse_datetime(data.get("dateCreated")) or utcnow(),
    }


# Fields refreshed by the sync. short_code, short_url and long_url stay as created.
SYNCED_FIELDS = ("visit_count", "meta", "title", "valid_until", "max_visits", "tags")


class ShlinkSyncService:
    def __init__(self, db: Session, client: ShlinkClient):
        self.db = db
        self.client = client

    def sync(self, user: User) -> int:
        """
        Refresh the user's live short URLs from Shlink.

        Returns the number of local records found remotely and refreshed.
        Errors on a single URL are logged and skipped; a failure while
        listing the remote URLs propagates as ShlinkError.
        """
        local_codes = [
            code for (code,) in ShortUrl.live(
                self.db.query(ShortUrl.short_code).filter(ShortUrl.user_id == user.id)
            )
        ]
        if not local_codes:
            logger.info("User %s has no live short URLs to sync", user.id)
            return 0

        try:
            remote_codes = self._fetch_remote_codes()
        except ShlinkError as e:
            logger.error("Failed to sync short URLs for user %s: %s", user.id, e)
            raise

        synced = 0
        for short_code in local_codes:
            try:
                if short_code in remote_codes:
                    if self._refresh(user, short_code):
                        synced += 1
                elif not self._exists_remotely(short_code):
                    if self._soft_delete(user, short_code):
                        logger.info("Soft deleted missing short URL %s for user %s", short_code, user.id)
            except Exception as e:
                self.db.rollback()
                logger.warning("Failed to sync short URL %s for user %s: %s", short_code, user.id, e)

        return synced

    def _pages(self):
        page = 1
        while True:
            response = self.client.list_short_urls(page=page, items_per_page=PAGE_SIZE)
            short_urls = response.get("shortUrls") or {}
            data = short_urls.get("data") or []
            if not data:
                return
            yield data
            pagination = short_urls.get("pagination") or {}
            if pagination.get("currentPage", page) >= pagination.get("pagesCount", page):
                return
            page += 1

    def _fetch_remote_codes(self) -> Set[str]:
        codes = set()
        for data in self._pages():
            codes.update(item.get("shortCode") for item in data)
        return codes

    def _find_remote(self, short_code: str) -> Optional[Dict[str, Any]]:
        # Known inefficiency: one full paginated scan per local code (O(n^2)).
        # Kept until Shlink's single-URL endpoint is used for the refresh too.
        for data in self._pages():
            for item in data:
                if item.get("shortCode") == short_code:
                    return item
        return None

    def _exists_remotely(self, short_code: str) -> bool:
        """Only a 404 counts as absent; any other error keeps the record."""
        try:
            self.client.get_short_url(short_code)
        except ShlinkError as e:
            if e.not_found:
                return False
            logger.warning("Existence check for %s failed (%s), keeping it", short_code, e)
        return True

    def _refresh(self, user: User, short_code: str) -> bool:
        data = self._find_remote(short_code)
        if data is None:
            logger.warning("Short URL %s not found in Shlink for user %s", short_code, user.id)
            return False

        short_url = (
            self.db.query(ShortUrl)
            .filter(ShortUrl.user_id == user.id, ShortUrl.short_code == short_code)
            .first()
        )
        if short_url is None:
            logger.error("Attempted to sync %s which user %s does not own", short_code, user.id)
            return False

        attrs = attributes_from_remote(data)
        changed = False
        for field in SYNCED_FIELDS:
            if getattr(short_url, field) != attrs[field]:
                setattr(short_url, field, attrs[field])
                changed = True
        if changed:
            self.db.commit()
            logger.info(
                "Synced short URL %s for user %s (visits: %s)",
                short_code, user.id, short_url.visit_count,
            )
        return True

    def _soft_delete(self, user: User, short_code: str) -> bool:
        short_url = ShortUrl.live(
            self.db.query(ShortUrl).filter(
                ShortUrl.user_id == user.id, ShortUrl.short_code == short_code
            )
        ).first()
        if short_url is None:
            return False
        short_url.soft_delete()
        self.db.commit()
        return True

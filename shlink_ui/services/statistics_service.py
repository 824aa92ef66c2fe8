"""
Statistics aggregators for the dashboards.

Visits are always read from Shlink; the shaped result is cached so a
dashboard reload does not page through thousands of visits again. The
cache key carries the current date, so a new day starts a fresh entry.
"""

import json
import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shlink_ui.cache.strategies import CacheStrategy
from shlink_ui.clock import today
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import User
from shlink_ui.services import visit_buckets
from shlink_ui.services.shlink_client import VISITS_PAGE_SIZE, ShlinkClient, ShlinkError

logger = logging.getLogger(__name__)

INDIVIDUAL_CACHE_TTL = 30 * 60
OVERALL_CACHE_TTL = 60 * 60
MONTHS_SHOWN = 6
STATUS_LABELS = ["Active", "Expired", "Limit reached"]


def fetch_all_visits(client: ShlinkClient, short_code: str, start_date=None, end_date=None) -> List[Dict[str, Any]]:
    """Walk every page of a short URL's visits."""
    visits: List[Dict[str, Any]] = []
    page = 1
    while True:
        response = client.get_url_visits(
            short_code, start_date=start_date, end_date=end_date,
            page=page, items_per_page=VISITS_PAGE_SIZE,
        )
        data, pagination = visit_buckets.extract_visits(response)
        visits.extend(data)
        if not data or not pagination:
            break
        if pagination.get("currentPage", page) >= pagination.get("pagesCount", page):
            break
        page += 1
    return visits


class _CachedAggregator:
    def __init__(
        self,
        db: Session,
        client: ShlinkClient,
        cache: Optional[CacheStrategy] = None,
        tz: tzinfo = timezone.utc,
    ):
        self.db = db
        self.client = client
        self.cache = cache
        self.tz = tz

    async def _cached(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.cache:
            return None
        cached = await self.cache.get(key)
        if cached:
            try:
                return json.loads(cached)
            except ValueError:
                logger.warning("Discarding unreadable cache entry %s", key)
        return None

    async def _store(self, key: str, data: Dict[str, Any], ttl: int):
        if self.cache:
            await self.cache.set(key, json.dumps(data, default=str), ttl=ttl)

    def _window(self, period: str):
        days = visit_buckets.date_window(period, today(self.tz))
        start = datetime.combine(days[0], time.min, tzinfo=self.tz)
        return days, start


class IndividualUrlStatisticsService(_CachedAggregator):
    """Visit statistics for one short URL of one user."""

    async def get(self, user: User, short_code: str, period: str = visit_buckets.DEFAULT_PERIOD) -> Dict[str, Any]:
        period = visit_buckets.normalize_period(period)
        key = f"individual_url_statistics:{user.id}:{short_code}:{period}:{today(self.tz).isoformat()}"

        cached = await self._cached(key)
        if cached is not None:
            return cached

        days, start = self._window(period)
        try:
            visits = fetch_all_visits(self.client, short_code, start_date=start)
        except ShlinkError as e:
            # Degraded answers are not cached so the next reload retries
            logger.error("Individual URL statistics error for %s: %s", short_code, e)
            return self.empty(user, short_code, period, days)

        dated = visit_buckets.dated_visits(visits, self.tz)
        parsed = [visit for _, visit in dated]
        data = {
            "daily_visits": visit_buckets.daily_series(dated, days),
            "hourly_visits": visit_buckets.hourly_series(dated),
            **visit_buckets.breakdowns(parsed),
            "total_visits": len(parsed),
            "unique_visitors": visit_buckets.unique_visitors(parsed),
            "url_info": self.url_info(user, short_code),
            "period": period,
        }
        await self._store(key, data, INDIVIDUAL_CACHE_TTL)
        return data

    def empty(self, user: User, short_code: str, period: str, days: List[date]) -> Dict[str, Any]:
        return {
            "daily_visits": visit_buckets.daily_series([], days),
            "hourly_visits": visit_buckets.hourly_series([]),
            "browser_stats": visit_buckets.empty_series(),
            "country_stats": visit_buckets.empty_series(),
            "referer_stats": visit_buckets.empty_series(),
            "total_visits": 0,
            "unique_visitors": 0,
            "url_info": self.url_info(user, short_code),
            "period": period,
            "degraded": True,
        }

    def url_info(self, user: User, short_code: str) -> Optional[Dict[str, Any]]:
        url = (
            self.db.query(ShortUrl)
            .filter(ShortUrl.user_id == user.id, ShortUrl.short_code == short_code)
            .first()
        )
        if url is None:
            return None
        return {
            "short_code": url.short_code,
            "long_url": url.long_url,
            "title": url.title,
            "tags": url.tags_list,
            "date_created": url.date_created.isoformat() if url.date_created else None,
        }


class OverallStatisticsService(_CachedAggregator):
    """Dashboard statistics across all live short URLs of one user."""

    async def get(self, user: User, period: str = visit_buckets.DEFAULT_PERIOD) -> Dict[str, Any]:
        period = visit_buckets.normalize_period(period)
        key = f"user_statistics:{user.id}:{period}:{today(self.tz).isoformat()}"

        cached = await self._cached(key)
        if cached is not None:
            return cached

        urls = ShortUrl.live(self.db.query(ShortUrl).filter(ShortUrl.user_id == user.id)).all()
        days, start = self._window(period)

        visits: List[Dict[str, Any]] = []
        for url in urls:
            try:
                visits.extend(fetch_all_visits(self.client, url.short_code, start_date=start))
            except ShlinkError as e:
                logger.warning("Skipping visits of %s for user %s: %s", url.short_code, user.id, e)

        dated = visit_buckets.dated_visits(visits, self.tz)
        parsed = [visit for _, visit in dated]
        data = {
            "overall": self.summary(urls),
            "daily": visit_buckets.daily_series(dated, days),
            "hourly": visit_buckets.hourly_series(dated),
            **visit_buckets.breakdowns(parsed),
            "unique_visitors": visit_buckets.unique_visitors(parsed),
            "status": self.status(urls),
            "monthly": self.monthly(urls),
            "period": period,
        }
        await self._store(key, data, OVERALL_CACHE_TTL)
        return data

    @staticmethod
    def summary(urls: List[ShortUrl]) -> Dict[str, int]:
        return {
            "total_urls": len(urls),
            "total_visits": sum(url.visit_count or 0 for url in urls),
            "active_urls": sum(1 for url in urls if url.is_active),
        }

    @staticmethod
    def status(urls: List[ShortUrl]) -> Dict[str, List]:
        active = expired = limit_reached = 0
        for url in urls:
            if url.is_expired:
                expired += 1
            elif url.visit_limit_reached:
                limit_reached += 1
            else:
                active += 1
        return visit_buckets.series(STATUS_LABELS, [active, expired, limit_reached])

    def monthly(self, urls: List[ShortUrl]) -> Dict[str, List]:
        """URLs created per month over the last six months, oldest first."""
        current = today(self.tz).replace(day=1)
        months = []
        for _ in range(MONTHS_SHOWN):
            months.append(current)
            current = (current - timedelta(days=1)).replace(day=1)
        months.reverse()

        counts: Dict[tuple, int] = {}
        for url in urls:
            if url.date_created:
                created = url.date_created.replace(tzinfo=timezone.utc).astimezone(self.tz)
                month_key = (created.year, created.month)
                counts[month_key] = counts.get(month_key, 0) + 1

        return visit_buckets.series(
            [m.strftime("%Y/%m") for m in months],
            [counts.get((m.year, m.month), 0) for m in months],
        )

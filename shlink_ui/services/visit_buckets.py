"""
Turn raw Shlink visit records into chart-ready label/value series.

All functions are pure: they take the list of visit dicts returned by the
Shlink API and never raise on malformed records.
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

PERIODS = {"7d": 7, "30d": 30, "90d": 90, "365d": 365}
DEFAULT_PERIOD = "30d"
TOP_N = 10


def normalize_period(period: Optional[str]) -> str:
    return period if period in PERIODS else DEFAULT_PERIOD


def period_days(period: Optional[str]) -> int:
    return PERIODS[normalize_period(period)]


def date_window(period: Optional[str], end: date) -> List[date]:
    """The last N calendar days ending at `end`, oldest first."""
    days = period_days(period)
    start = end - timedelta(days=days - 1)
    return [start + timedelta(days=i) for i in range(days)]


def series(labels: List[str], values: List[int]) -> Dict[str, List]:
    return {"labels": labels, "values": values}


def empty_series() -> Dict[str, List]:
    return series([], [])


def extract_visits(response: Any) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Pull the visit list and pagination out of a visits response.

    Shlink answers {"visits": {"data": [...], "pagination": {...}}}; a bare
    list under "visits" or "data" is accepted too.
    """
    if not isinstance(response, dict):
        logger.error("Invalid Shlink visits response: %r", type(response))
        return [], {}
    visits = response.get("visits")
    if isinstance(visits, dict) and isinstance(visits.get("data"), list):
        return visits["data"], visits.get("pagination") or {}
    if isinstance(visits, list):
        return visits, {}
    if isinstance(response.get("data"), list):
        return response["data"], response.get("pagination") or {}
    logger.warning("Could not extract visits from response keys: %s", list(response))
    return [], {}


def visit_time(visit: Any, tz: tzinfo = timezone.utc) -> Optional[datetime]:
    """Visit timestamp in the given zone, None if it cannot be parsed."""
    if not isinstance(visit, dict) or not visit.get("date"):
        return None
    try:
        parsed = datetime.fromisoformat(str(visit["date"]).strip().replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Invalid date format in visit data: %s", visit.get("date"))
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(tz)


def dated_visits(visits: Iterable[Any], tz: tzinfo = timezone.utc) -> List[Tuple[datetime, Dict[str, Any]]]:
    """Pair each visit with its timestamp, dropping the unparsable ones."""
    result = []
    for visit in visits:
        moment = visit_time(visit, tz)
        if moment is not None:
            result.append((moment, visit))
    return result


def daily_series(dated: List[Tuple[datetime, Dict]], window: List[date]) -> Dict[str, List]:
    counts = Counter(moment.date() for moment, _ in dated)
    return series(
        [day.strftime("%m/%d") for day in window],
        [counts.get(day, 0) for day in window],
    )


def hourly_series(dated: List[Tuple[datetime, Dict]]) -> Dict[str, List]:
    counts = Counter(moment.hour for moment, _ in dated)
    return series([f"{h}:00" for h in range(24)], [counts.get(h, 0) for h in range(24)])


def browser_name(visit: Dict[str, Any]) -> str:
    user_agent = visit.get("userAgent")
    if isinstance(user_agent, dict):
        return user_agent.get("browser") or "Unknown"
    if isinstance(user_agent, str) and user_agent:
        # Edge and Chrome UAs both mention Safari, so order matters
        if "Edg" in user_agent:
            return "Edge"
        if "Chrome" in user_agent:
            return "Chrome"
        if "Firefox" in user_agent:
            return "Firefox"
        if "Safari" in user_agent:
            return "Safari"
        return "Other"
    return "Unknown"


def country_name(visit: Dict[str, Any]) -> str:
    location = visit.get("visitLocation")
    if isinstance(location, dict):
        return location.get("countryName") or "Unknown"
    return "Unknown"


def referer_host(visit: Dict[str, Any]) -> str:
    referer = visit.get("referer")
    if not referer or not str(referer).strip():
        return "Direct"
    try:
        return urlparse(str(referer).strip()).hostname or "Unknown"
    except ValueError:
        return "Unknown"


def top_series(values: Iterable[str], limit: int = TOP_N) -> Dict[str, List]:
    ranked = Counter(values).most_common(limit)
    return series([label for label, _ in ranked], [count for _, count in ranked])


def breakdowns(visits: List[Dict[str, Any]]) -> Dict[str, Dict[str, List]]:
    return {
        "browser_stats": top_series(browser_name(v) for v in visits),
        "country_stats": top_series(country_name(v) for v in visits),
        "referer_stats": top_series(referer_host(v) for v in visits),
    }


def visitor_ip(visit: Dict[str, Any]) -> Optional[str]:
    location = visit.get("visitLocation")
    if isinstance(location, dict) and location.get("ipAddress"):
        return location["ipAddress"]
    return visit.get("ipAddress") or None


def unique_visitors(visits: Iterable[Dict[str, Any]]) -> int:
    return len({ip for ip in (visitor_ip(v) for v in visits) if ip})

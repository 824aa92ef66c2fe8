"""
HTTP client for the Shlink REST API (v3).

Every call sends the static X-Api-Key header and returns the decoded JSON
body on success. Non-2xx answers and network failures are raised as
ShlinkError so callers only ever deal with one exception type.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

import requests

from shlink_ui.config import settings

logger = logging.getLogger(__name__)

API_PREFIX = "/rest/v3"
DEFAULT_ITEMS_PER_PAGE = 20
VISITS_PAGE_SIZE = 5000

# Sentinel for PATCH fields that must be sent as null
CLEAR = ""


class ShlinkError(Exception):
    """Error returned by (or while talking to) the Shlink API."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


def _iso(value: Union[str, date, datetime, None]) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or "unknown error"
    if isinstance(body, dict):
        return body.get("detail") or body.get("title") or str(body)
    return str(body)


class ShlinkClient:
    """
    Thin wrapper around one requests.Session.

    No retries happen here; the sync and statistics services decide
    what a failure means for them.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.shlink_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.shlink_api_key
        self.timeout = timeout or settings.shlink_timeout
        self.session = session or requests.Session()

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-Api-Key": self.api_key, "Accept": "application/json"}

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(
                method, url, headers=self.headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error("Shlink %s %s failed: %s", method, path, e)
            raise ShlinkError(f"HTTP error: {e}") from e

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self._send(method, path, **kwargs)
        if 200 <= response.status_code < 300:
            if response.status_code == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise ShlinkError("Invalid JSON in Shlink response", response.status_code) from e
        detail = _error_detail(response)
        raise ShlinkError(
            f"Shlink API error ({response.status_code}): {detail}", response.status_code
        )

    def list_short_urls(
        self,
        page: int = 1,
        items_per_page: Optional[int] = None,
        search_term: Optional[str] = None,
        tags: Optional[List[str]] = None,
        order_by: Optional[str] = None,
        start_date=None,
        end_date=None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "page": page,
            "itemsPerPage": items_per_page or DEFAULT_ITEMS_PER_PAGE,
        }
        if search_term:
            params["searchTerm"] = search_term
        if tags:
            params["tags[]"] = list(tags)
        if order_by:
            params["orderBy"] = order_by
        if start_date:
            params["startDate"] = _iso(start_date)
        if end_date:
            params["endDate"] = _iso(end_date)
        return self._request("GET", f"{API_PREFIX}/short-urls", params=params)

    def get_short_url(self, short_code: str) -> Dict[str, Any]:
        return self._request("GET", f"{API_PREFIX}/short-urls/{short_code}")

    def create_short_url(
        self,
        long_url: str,
        custom_slug: Optional[str] = None,
        valid_until=None,
        max_visits: Optional[int] = None,
        tags: Optional[List[str]] = None,
        title: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"longUrl": long_url}
        if custom_slug:
            payload["customSlug"] = custom_slug
        if valid_until:
            payload["validUntil"] = _iso(valid_until)
        if max_visits:
            payload["maxVisits"] = int(max_visits)
        if tags:
            payload["tags"] = list(tags)
        if title:
            payload["title"] = title
        return self._request("POST", f"{API_PREFIX}/short-urls", json=payload)

    def update_short_url(
        self,
        short_code: str,
        title: Optional[str] = None,
        long_url: Optional[str] = None,
        tags: Optional[List[str]] = None,
        valid_until=None,
        max_visits=None,
        custom_slug: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        PATCH only the provided fields.

        Passing CLEAR ("") for valid_until or max_visits removes the limit
        on the Shlink side (the field is sent as null).
        """
        payload: Dict[str, Any] = {}
        if title:
            payload["title"] = title
        if long_url:
            payload["longUrl"] = long_url
        if tags is not None:
            payload["tags"] = list(tags)
        if valid_until == CLEAR:
            payload["validUntil"] = None
        elif valid_until is not None:
            payload["validUntil"] = _iso(valid_until)
        if max_visits == CLEAR:
            payload["maxVisits"] = None
        elif max_visits is not None:
            payload["maxVisits"] = int(max_visits)
        if custom_slug:
            payload["customSlug"] = custom_slug
        return self._request("PATCH", f"{API_PREFIX}/short-urls/{short_code}", json=payload)

    def delete_short_url(self, short_code: str) -> bool:
        response = self._send("DELETE", f"{API_PREFIX}/short-urls/{short_code}")
        if 200 <= response.status_code < 300:
            logger.info("Deleted short URL %s on Shlink", short_code)
            return True
        if response.status_code == 404:
            message = "Short URL not found"
        elif response.status_code == 422:
            message = "This short URL cannot be deleted"
        else:
            message = _error_detail(response)
        logger.error("Failed to delete short URL %s: %s", short_code, message)
        raise ShlinkError(message, response.status_code)

    def get_url_visits(
        self,
        short_code: str,
        start_date=None,
        end_date=None,
        page: int = 1,
        items_per_page: int = VISITS_PAGE_SIZE,
    ) -> Dict[str, Any]:
        params = self._visit_params(start_date, end_date, page, items_per_page)
        return self._request(
            "GET", f"{API_PREFIX}/short-urls/{short_code}/visits", params=params
        )

    def get_global_visits(
        self,
        start_date=None,
        end_date=None,
        page: int = 1,
        items_per_page: int = VISITS_PAGE_SIZE,
    ) -> Dict[str, Any]:
        params = self._visit_params(start_date, end_date, page, items_per_page)
        return self._request("GET", f"{API_PREFIX}/visits", params=params)

    @staticmethod
    def _visit_params(start_date, end_date, page, items_per_page) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page, "itemsPerPage": items_per_page}
        if start_date:
            params["startDate"] = _iso(start_date)
        if end_date:
            params["endDate"] = _iso(end_date)
        return params

    def health(self) -> Dict[str, Any]:
        """Shlink's unversioned health endpoint ({"status": "pass", ...})."""
        return self._request("GET", "/rest/health")

    def get_redirect_rules(self, short_code: str) -> Dict[str, Any]:
        return self._request("GET", f"{API_PREFIX}/short-urls/{short_code}/redirect-rules")

    def set_redirect_rules(self, short_code: str, redirect_rules: List[Dict[str, Any]]) -> Dict[str, Any]:
        logger.info("Setting %d redirect rules for %s", len(redirect_rules), short_code)
        return self._request(
            "POST",
            f"{API_PREFIX}/short-urls/{short_code}/redirect-rules",
            json={"redirectRules": redirect_rules},
        )

    def get_qr_code(
        self, short_code: str, size: int = 300, format: str = "png", margin: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Fetch the QR image for a short code.

        Shlink serves it from the public /{code}/qr-code route; older
        deployments only expose it under the REST prefix, so that one is
        tried second.
        """
        params: Dict[str, Any] = {"size": size, "format": format}
        if margin is not None:
            params["margin"] = margin

        for path in (f"/{short_code}/qr-code", f"{API_PREFIX}/short-urls/{short_code}/qr-code"):
            response = self._send("GET", path, params=params)
            if response.status_code == 200:
                return {
                    "content_type": response.headers.get("content-type", f"image/{format}"),
                    "data": response.content,
                    "format": format,
                }
            logger.debug("QR code lookup at %s returned %s", path, response.status_code)

        raise ShlinkError("QR Code API error: Unable to retrieve QR code")

"""
Test configuration and fixtures for Shlink UI.
This centralizes all test setup, making individual tests clean.
"""

import os

# Must be set before the app (and its settings) are imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("QUEUE_BACKEND", "memory")
os.environ.setdefault("SEED_DEFAULT_SETTINGS", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("EMBEDDED_WORKER", "false")

import copy
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from shlink_ui.cache.strategies import InMemoryCache
from shlink_ui.clock import utcnow
from shlink_ui.database.connection import Base, get_db
from shlink_ui.dependencies import get_cache, get_queue, get_shlink_client
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import ROLE_ADMIN, User
from shlink_ui.queue.strategies import InMemoryQueue
from shlink_ui.services.auth_service import hash_password
from shlink_ui.services.runtime_config import AuthPolicy, runtime
from shlink_ui.services.shlink_client import CLEAR, ShlinkError

# Test database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "correct-horse-battery"


class FakeShlinkClient:
    """
    In-memory stand-in for ShlinkClient.

    `urls` maps short codes to Shlink payloads, `visits` maps short codes
    to visit lists. Set `fail_with` to make every call raise.
    """

    base = "https://s.test"

    def __init__(self):
        self.urls = {}
        self.visits = {}
        self.redirect_rules = {}
        self.fail_with = None
        self.calls = []

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    def add(self, short_code, long_url="https://example.com/", **extra):
        payload = {
            "shortCode": short_code,
            "shortUrl": f"{self.base}/{short_code}",
            "longUrl": long_url,
            "dateCreated": "2025-01-01T00:00:00+00:00",
            "visitsSummary": {"total": extra.pop("visits", 0)},
            "tags": extra.pop("tags", []),
            "meta": {"validSince": None, "validUntil": extra.pop("valid_until", None),
                     "maxVisits": extra.pop("max_visits", None)},
            "domain": None,
            "title": extra.pop("title", None),
            "crawlable": False,
            "forwardQuery": True,
        }
        payload.update(extra)
        self.urls[short_code] = payload
        return payload

    def list_short_urls(self, page=1, items_per_page=None, **kwargs):
        self._call("list_short_urls", page)
        per_page = items_per_page or 20
        data = list(self.urls.values())
        pages = max((len(data) + per_page - 1) // per_page, 1)
        chunk = data[(page - 1) * per_page: page * per_page]
        return {"shortUrls": {
            "data": copy.deepcopy(chunk),
            "pagination": {"currentPage": page, "pagesCount": pages, "totalItems": len(data)},
        }}

    def get_short_url(self, short_code):
        self._call("get_short_url", short_code)
        if short_code not in self.urls:
            raise ShlinkError("Shlink API error (404): not found", 404)
        return copy.deepcopy(self.urls[short_code])

    def create_short_url(self, long_url, custom_slug=None, valid_until=None, max_visits=None,
                         tags=None, title=None):
        self._call("create_short_url", long_url)
        code = custom_slug or f"code{len(self.urls) + 1}"
        if code in self.urls:
            raise ShlinkError("Shlink API error (400): slug in use", 400)
        until = valid_until.isoformat() if isinstance(valid_until, datetime) else valid_until
        return copy.deepcopy(self.add(code, long_url, tags=list(tags or []), title=title,
                                      valid_until=until, max_visits=max_visits))

    def update_short_url(self, short_code, title=None, long_url=None, tags=None,
                         valid_until=None, max_visits=None, custom_slug=None):
        self._call("update_short_url", short_code)
        payload = self.urls[short_code]
        if title:
            payload["title"] = title
        if long_url:
            payload["longUrl"] = long_url
        if tags is not None:
            payload["tags"] = list(tags)
        if valid_until == CLEAR:
            payload["meta"]["validUntil"] = None
        elif valid_until is not None:
            payload["meta"]["validUntil"] = valid_until.isoformat()
        if max_visits == CLEAR:
            payload["meta"]["maxVisits"] = None
        elif max_visits is not None:
            payload["meta"]["maxVisits"] = int(max_visits)
        return copy.deepcopy(payload)

    def delete_short_url(self, short_code):
        self._call("delete_short_url", short_code)
        if self.urls.pop(short_code, None) is None:
            raise ShlinkError("Short URL not found", 404)
        return True

    def get_url_visits(self, short_code, start_date=None, end_date=None, page=1, items_per_page=5000):
        self._call("get_url_visits", short_code)
        data = self.visits.get(short_code, [])
        return {"visits": {
            "data": data,
            "pagination": {"currentPage": 1, "pagesCount": 1, "totalItems": len(data)},
        }}

    def get_redirect_rules(self, short_code):
        self._call("get_redirect_rules", short_code)
        return {"defaultLongUrl": self.urls[short_code]["longUrl"],
                "redirectRules": self.redirect_rules.get(short_code, [])}

    def set_redirect_rules(self, short_code, redirect_rules):
        self._call("set_redirect_rules", short_code)
        self.redirect_rules[short_code] = redirect_rules
        return {"redirectRules": redirect_rules}

    def health(self):
        self._call("health")
        return {"status": "pass", "version": "4.1.0"}

    def get_qr_code(self, short_code, size=300, format="png", margin=None):
        self._call("get_qr_code", short_code)
        return {"content_type": f"image/{format}", "data": b"\x89PNG-fake", "format": format}


def visit(date, ip="1.1.1.1", browser="Chrome", country="Japan", referer=""):
    """A Shlink visit payload."""
    if isinstance(date, datetime):
        date = date.astimezone(timezone.utc).isoformat()
    return {
        "date": date,
        "referer": referer,
        "userAgent": f"Mozilla/5.0 {browser}/120.0",
        "visitLocation": {"countryName": country, "ipAddress": ip},
    }


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    This ensures tests are isolated and don't affect each other.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_runtime():
    """Runtime policy is process-global; give every test the defaults."""
    runtime.auth = AuthPolicy()
    runtime.timezone = timezone.utc
    runtime.mail_adapter = None
    yield
    runtime.auth = AuthPolicy()
    runtime.timezone = timezone.utc
    runtime.mail_adapter = None


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def queue():
    return InMemoryQueue()


@pytest.fixture
def shlink():
    return FakeShlinkClient()


@pytest.fixture(scope="function")
def client(db_session, cache, queue, shlink):
    """
    Create a test client with database, cache, queue and Shlink
    dependencies overridden.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_shlink_client] = lambda: shlink

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db, email="user@example.com", role="normal_user", password=PASSWORD, **extra):
    user = User(
        email=email,
        encrypted_password=hash_password(password),
        name=extra.pop("name", email.split("@")[0]),
        role=role,
        confirmed_at=extra.pop("confirmed_at", utcnow()),
        **extra,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_local(db, user, code, **extra):
    url = ShortUrl(
        short_code=code,
        short_url=f"https://s.test/{code}",
        long_url=extra.pop("long_url", "https://example.com/"),
        user_id=user.id,
        visit_count=extra.pop("visit_count", 0),
        **extra,
    )
    db.add(url)
    db.commit()
    return url


@pytest.fixture
def user(db_session):
    return make_user(db_session)


@pytest.fixture
def admin(db_session):
    return make_user(db_session, email="admin@example.com", role=ROLE_ADMIN)


def login(client, email, password=PASSWORD):
    response = client.post("/users/sign_in", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response


@pytest.fixture
def user_client(client, user):
    login(client, user.email)
    return client


@pytest.fixture
def admin_client(client, admin):
    login(client, admin.email)
    return client

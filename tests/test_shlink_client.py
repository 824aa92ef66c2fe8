"""
Tests for the Shlink REST client (requests.Session is mocked).
"""
from unittest.mock import MagicMock

import pytest
import requests

from shlink_ui.services.shlink_client import CLEAR, ShlinkClient, ShlinkError


def make_response(status_code=200, json_body=None, content=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.reason = "reason"
    if json_body is not None:
        response.json.return_value = json_body
        response.content = b"{}"
        response.text = "{}"
    else:
        response.json.side_effect = ValueError("no json")
        response.content = content or b""
        response.text = (content or b"").decode("latin-1")
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def shlink_client(session):
    return ShlinkClient(base_url="https://shlink.test/", api_key="secret", timeout=5, session=session)


class TestRequests:
    """Headers, paths and error mapping"""

    def test_sends_api_key_and_prefix(self, shlink_client, session):
        session.request.return_value = make_response(json_body={"shortUrls": {"data": []}})

        shlink_client.list_short_urls(page=2, items_per_page=50, search_term="abc", tags=["x"])

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "GET"
        assert url == "https://shlink.test/rest/v3/short-urls"
        assert kwargs["headers"]["X-Api-Key"] == "secret"
        assert kwargs["timeout"] == 5
        assert kwargs["params"] == {"page": 2, "itemsPerPage": 50, "searchTerm": "abc", "tags[]": ["x"]}

    def test_error_uses_detail(self, shlink_client, session):
        session.request.return_value = make_response(400, {"title": "Bad", "detail": "Invalid slug"})

        with pytest.raises(ShlinkError) as exc:
            shlink_client.create_short_url("https://example.com")

        assert exc.value.status == 400
        assert "Invalid slug" in exc.value.message

    def test_error_falls_back_to_title(self, shlink_client, session):
        session.request.return_value = make_response(500, {"title": "Server broke"})

        with pytest.raises(ShlinkError, match="Server broke"):
            shlink_client.get_short_url("abc")

    def test_network_error_is_wrapped(self, shlink_client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ShlinkError, match="HTTP error"):
            shlink_client.get_short_url("abc")

    def test_empty_success_body(self, shlink_client, session):
        session.request.return_value = make_response(204)
        assert shlink_client.set_redirect_rules("abc", []) == {}


class TestPayloads:
    """Request bodies of write operations"""

    def test_create_payload(self, shlink_client, session):
        session.request.return_value = make_response(json_body={"shortCode": "abc"})

        shlink_client.create_short_url(
            "https://example.com", custom_slug="my-slug", max_visits=5, tags=["a"], title="T"
        )

        assert session.request.call_args.kwargs["json"] == {
            "longUrl": "https://example.com",
            "customSlug": "my-slug",
            "maxVisits": 5,
            "tags": ["a"],
            "title": "T",
        }

    def test_update_sends_only_given_fields(self, shlink_client, session):
        session.request.return_value = make_response(json_body={})

        shlink_client.update_short_url("abc", title="New")

        assert session.request.call_args.args[0] == "PATCH"
        assert session.request.call_args.kwargs["json"] == {"title": "New"}

    def test_update_clear_sends_null(self, shlink_client, session):
        session.request.return_value = make_response(json_body={})

        shlink_client.update_short_url("abc", valid_until=CLEAR, max_visits=CLEAR)

        assert session.request.call_args.kwargs["json"] == {"validUntil": None, "maxVisits": None}

    def test_redirect_rules_body(self, shlink_client, session):
        session.request.return_value = make_response(json_body={"redirectRules": []})
        rules = [{"longUrl": "https://m.example.com", "conditions": [{"type": "device", "matchValue": "ios"}]}]

        shlink_client.set_redirect_rules("abc", rules)

        assert session.request.call_args.args == ("POST", "https://shlink.test/rest/v3/short-urls/abc/redirect-rules")
        assert session.request.call_args.kwargs["json"] == {"redirectRules": rules}


class TestDelete:
    def test_success(self, shlink_client, session):
        session.request.return_value = make_response(204)
        assert shlink_client.delete_short_url("abc") is True

    def test_not_found(self, shlink_client, session):
        session.request.return_value = make_response(404, {"detail": "x"})
        with pytest.raises(ShlinkError, match="Short URL not found") as exc:
            shlink_client.delete_short_url("abc")
        assert exc.value.not_found

    def test_unprocessable(self, shlink_client, session):
        session.request.return_value = make_response(422, {"detail": "x"})
        with pytest.raises(ShlinkError, match="cannot be deleted"):
            shlink_client.delete_short_url("abc")


class TestQrCode:
    def test_falls_back_to_rest_path(self, shlink_client, session):
        session.request.side_effect = [
            make_response(404, content=b"nope"),
            make_response(200, content=b"PNGDATA", headers={"content-type": "image/png"}),
        ]

        qr = shlink_client.get_qr_code("abc")

        assert qr == {"content_type": "image/png", "data": b"PNGDATA", "format": "png"}
        paths = [call.args[1] for call in session.request.call_args_list]
        assert paths == [
            "https://shlink.test/abc/qr-code",
            "https://shlink.test/rest/v3/short-urls/abc/qr-code",
        ]

    def test_both_paths_fail(self, shlink_client, session):
        session.request.return_value = make_response(404, content=b"nope")
        with pytest.raises(ShlinkError, match="QR Code"):
            shlink_client.get_qr_code("abc")


class TestHealth:
    def test_health_uses_unversioned_path(self, shlink_client, session):
        session.request.return_value = make_response(json_body={"status": "pass", "version": "4.1.0"})

        assert shlink_client.health()["status"] == "pass"
        assert session.request.call_args.args == ("GET", "https://shlink.test/rest/health")

    def test_health_failure(self, shlink_client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ShlinkError, match="HTTP error"):
            shlink_client.health()

"""
Tests for the plain pages: health, root, teapot.
"""
from shlink_ui.config import settings


class TestPages:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["docs"] == "/docs"
        assert "Shlink UI" in body["message"]

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "environment": "test"}

    def test_teapot(self, client):
        response = client.get("/teapot")
        assert response.status_code == 418
        assert response.text == "I'm a teapot, not a coffee maker!"
        assert response.headers["X-Teapot-Message"] == "I'm a teapot, not a coffee maker!"

    def test_coffee_redirects_to_teapot_in_development(self, client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "development")
        response = client.get("/coffee", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "/teapot"

    def test_coffee_anywhere_in_path(self, client, monkeypatch):
        monkeypatch.setattr(settings, "environment", "development")
        response = client.get("/menu/CoffeeShop")
        assert response.status_code == 418

    def test_no_coffee_redirect_outside_development(self, client):
        response = client.get("/coffee", follow_redirects=False)
        assert response.status_code == 404

"""Tests for the HTTP surface. Scraping and detection are replaced with fakes."""

import pytest
from fastapi.testclient import TestClient

from app import main as api
from app.cache import DetectionCache
from app.config import get_settings
from app.models import AuthComponent, AuthDetails, DetectionMethod, DetectionResult
from app.scraper import LivePage, ScrapeOutcome
from fakes import FakeContext, FakePage


@pytest.fixture
def calls():
    return {"scrape": 0, "pages": [], "contexts": [], "detect_error": None, "scrape_error": None}


@pytest.fixture
def client(settings, calls, monkeypatch):
    async def fake_scrape(url, request_id, pool, settings_):
        calls["scrape"] += 1
        if calls["scrape_error"]:
            return ScrapeOutcome(success=False, url=url, error=calls["scrape_error"])
        page = FakePage()
        context = FakeContext(page)
        calls["pages"].append(page)
        calls["contexts"].append(context)
        return ScrapeOutcome(
            success=True,
            url=url,
            html='<form><input type="password"></form>',
            title="Sign in - Example",
            screenshot="data:image/jpeg;base64,AAAA",
            live=LivePage(page, context, pool, request_id),
        )

    async def fake_detect(html, url, screenshot, page, request_id, settings_):
        assert not page.closed
        if calls["detect_error"]:
            raise calls["detect_error"]
        return DetectionResult(
            success=True,
            url=url,
            components=[AuthComponent(type="traditional", snippet=html,
                                      details=AuthDetails(fields=["password"]))],
            detection_method=DetectionMethod.PATTERN,
        )

    monkeypatch.setattr(api, "scrape_website", fake_scrape)
    monkeypatch.setattr(api, "detect_authentication", fake_detect)
    api.app.dependency_overrides[get_settings] = lambda: settings

    with TestClient(api.app) as test_client:
        api.app.state.detection_cache = DetectionCache(settings)
        yield test_client

    api.app.dependency_overrides.clear()


class TestDetect:

    def test_detects_and_prefixes_scheme(self, client, calls):
        response = client.post("/detect", json={"url": "example.com/login"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["url"] == "https://example.com/login"
        assert body["found"] is True
        assert body["detectionMethod"] == "pattern"
        assert body["pageTitle"] == "Sign in - Example"
        assert body["screenshot"] == "data:image/jpeg;base64,AAAA"
        assert body["cached"] is False
        assert body["components"][0]["details"]["fields"] == ["password"]
        assert calls["pages"][0].closed
        assert calls["contexts"][0].closed

    def test_second_request_served_from_cache(self, client, calls):
        first = client.post("/detect", json={"url": "https://example.com/login"}).json()
        second = client.post("/detect", json={"url": "https://www.example.com/login/?ref=nav"}).json()

        assert calls["scrape"] == 1
        assert second["cached"] is True
        assert second["components"] == first["components"]
        assert second["pageTitle"] == first["pageTitle"]
        assert second["screenshot"] == first["screenshot"]

    def test_missing_url(self, client, calls):
        response = client.post("/detect", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "URL is required"}
        assert calls["scrape"] == 0

    def test_malformed_body(self, client):
        response = client.post("/detect", content="not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_scrape_failure(self, client, calls):
        calls["scrape_error"] = "Scraping timeout after 60000ms"
        response = client.post("/detect", json={"url": "https://slow.example.com"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Scraping timeout after 60000ms"}

    def test_detection_error_releases_page(self, client, calls):
        calls["detect_error"] = RuntimeError("boom")
        response = client.post("/detect", json={"url": "https://example.com"})

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert calls["pages"][0].closed
        assert calls["contexts"][0].closed

    def test_failures_not_cached(self, client, calls):
        calls["scrape_error"] = "net::ERR_CONNECTION_REFUSED"
        client.post("/detect", json={"url": "https://example.com"})
        calls["scrape_error"] = None
        response = client.post("/detect", json={"url": "https://example.com"})

        assert response.status_code == 200
        assert response.json()["cached"] is False
        assert calls["scrape"] == 2


class TestStatusAndCacheAdmin:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_status(self, client):
        body = client.get("/detect").json()
        assert body == {"status": "ok", "service": "auth-component-detector", "version": "2.0.0"}

    def test_status_with_stats(self, client):
        client.post("/detect", json={"url": "https://example.com"})
        client.post("/detect", json={"url": "https://example.com"})

        body = client.get("/detect", params={"stats": "true"}).json()

        assert body["cache"]["cacheHits"] == 1
        assert body["cache"]["cacheMisses"] == 1
        assert body["cache"]["currentSize"] == 1
        assert set(body["browserPool"]) == {"healthy", "idleTime", "initializing"}

    def test_invalidate_one(self, client, calls):
        client.post("/detect", json={"url": "https://example.com/login"})

        assert client.delete("/detect", params={"url": "https://www.example.com/login"}).json() == {"deleted": True}
        assert client.delete("/detect", params={"url": "https://example.com/login"}).json() == {"deleted": False}

        client.post("/detect", json={"url": "https://example.com/login"})
        assert calls["scrape"] == 2

    def test_clear_all(self, client):
        client.post("/detect", json={"url": "https://a.example.com"})
        client.post("/detect", json={"url": "https://b.example.com"})

        assert client.delete("/detect").json() == {"cleared": True, "entriesCleared": 2}
        assert client.get("/detect", params={"stats": "true"}).json()["cache"]["currentSize"] == 0

    def test_invalidate_bare_host(self, client, calls):
        client.post("/detect", json={"url": "example.com/login"})

        assert client.delete("/detect", params={"url": "example.com/login"}).json() == {"deleted": True}
        assert client.post("/detect", json={"url": "example.com/login"}).json()["cached"] is False
        assert calls["scrape"] == 2


def test_with_scheme():
    assert api.with_scheme("example.com/login") == "https://example.com/login"
    assert api.with_scheme(" http://localhost:3000 ") == "http://localhost:3000"
    assert api.with_scheme("") == ""


class TestCors:

    def preflight(self, client, origin: str):
        return client.options("/detect", headers={
            "Origin": origin,
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        })

    def test_allowed_origin_preflight(self, client):
        origin = get_settings().cors_allowed_origins[0]
        response = self.preflight(client, origin)

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == origin
        assert response.headers["access-control-allow-credentials"] == "true"
        assert "DELETE" in response.headers["access-control-allow-methods"]

    def test_unknown_origin_preflight_rejected(self, client):
        response = self.preflight(client, "https://evil.example.net")

        assert response.status_code == 400
        assert "access-control-allow-origin" not in response.headers

    def test_unknown_origin_gets_no_allow_header(self, client):
        response = client.get("/health", headers={"Origin": "https://evil.example.net"})

        assert response.status_code == 200
        assert "access-control-allow-origin" not in response.headers

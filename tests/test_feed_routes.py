"""
Tests for the feed admin HTTP API.

The app is built with an in-memory catalog and a mock fetcher; the
scheduler is disabled and the lifespan never runs (no `with TestClient`).
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from core.catalog.repository import InMemoryCatalogRepository
from feeds.mock import MockFeedFetcher
from utils.config import Config
from web.app import create_app


FIXTURES_DIR = Path(__file__).parent / "fixtures"
FEED_URL = "https://partner.example.com/feed.xml"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def catalog():
    return InMemoryCatalogRepository()


@pytest.fixture
def client(catalog):
    fetcher = MockFeedFetcher({FEED_URL: (FIXTURES_DIR / "realty.xml").read_bytes()})
    app = create_app(catalog=catalog, fetcher=fetcher, config=Config(scheduler_enabled=False))
    return TestClient(app)


@pytest.fixture
def upload_feed(client):
    response = client.post("/admin/feeds", json={"name": "Acme Upload", "format": "csv"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def url_feed(client):
    response = client.post(
        "/admin/feeds",
        json={
            "id": "acme-xml",
            "name": "Acme XML",
            "mode": "url",
            "format": "xml",
            "url": FEED_URL,
            "auto_refresh": True,
            "refresh_interval_hours": 6,
        },
    )
    assert response.status_code == 201
    return response.json()


# =============================================================================
# Health
# =============================================================================


class TestHealth:
    """Tests for health endpoints."""

    def test_root(self, client):
        assert client.get("/").json() == {"status": "ok"}

    def test_health_reports_scheduler(self, client):
        data = client.get("/health").json()
        assert data["scheduler"] == "stopped"
        assert data["refreshing"] == []


# =============================================================================
# Feeds
# =============================================================================


class TestFeedRoutes:
    """Tests for feed CRUD."""

    def test_create_uses_slug_id(self, upload_feed):
        assert upload_feed["id"] == "acme-upload"
        assert upload_feed["mode"] == "upload"
        assert upload_feed["format"] == "csv"

    def test_list(self, client, upload_feed, url_feed):
        ids = [f["id"] for f in client.get("/admin/feeds").json()["feeds"]]
        assert ids == ["acme-upload", "acme-xml"]

    def test_duplicate_is_conflict(self, client, upload_feed):
        response = client.post("/admin/feeds", json={"name": "Acme Upload"})
        assert response.status_code == 409

    def test_url_mode_without_url_is_rejected(self, client):
        response = client.post("/admin/feeds", json={"name": "Bad", "mode": "url"})
        assert response.status_code == 422

    def test_interval_over_a_week_is_rejected(self, client):
        response = client.post(
            "/admin/feeds",
            json={"name": "Slow", "mode": "url", "url": FEED_URL, "refresh_interval_hours": 200},
        )
        assert response.status_code == 422

    def test_update_keeps_refresh_stamp(self, client, catalog, url_feed):
        from core.catalog.schema import utcnow

        stamp = utcnow()
        catalog.stamp_feed_refresh("acme-xml", stamp)

        response = client.put(
            "/admin/feeds/acme-xml",
            json={"name": "Renamed", "mode": "url", "url": FEED_URL, "format": "xml"},
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"
        assert catalog.get_feed("acme-xml").last_auto_refresh == stamp

    def test_detail_includes_last_run(self, client, url_feed):
        client.post("/admin/feeds/acme-xml/refresh")
        data = client.get("/admin/feeds/acme-xml").json()
        assert data["feed"]["id"] == "acme-xml"
        assert data["lastRun"]["status"] == "success"

    def test_unknown_feed_is_404(self, client):
        assert client.get("/admin/feeds/nope").status_code == 404
        assert client.delete("/admin/feeds/nope").status_code == 404

    def test_delete(self, client, catalog, upload_feed):
        assert client.delete("/admin/feeds/acme-upload").status_code == 200
        assert catalog.get_feed("acme-upload") is None


# =============================================================================
# Refresh
# =============================================================================


class TestRefreshRoute:
    """Tests for POST /admin/feeds/{id}/refresh."""

    def test_refresh_url_feed(self, client, catalog, url_feed):
        response = client.post("/admin/feeds/acme-xml/refresh")

        assert response.status_code == 200
        body = response.json()
        assert body["run"]["status"] == "success"
        assert body["result"]["inserted"] == 2
        assert len(catalog.list_units("acme-xml")) == 2

    def test_upload_feed_cannot_refresh(self, client, upload_feed):
        assert client.post("/admin/feeds/acme-upload/refresh").status_code == 400

    def test_feed_already_refreshing_is_conflict(self, client, catalog, url_feed):
        scheduler = client.app.state.scheduler
        assert scheduler.claim("acme-xml")
        try:
            response = client.post("/admin/feeds/acme-xml/refresh")
        finally:
            scheduler.release("acme-xml")

        assert response.status_code == 409
        assert catalog.list_runs("acme-xml") == []

    def test_refresh_releases_feed(self, client, url_feed):
        client.post("/admin/feeds/acme-xml/refresh")
        assert client.app.state.scheduler.in_flight == frozenset()


# =============================================================================
# Imports
# =============================================================================


class TestImportRoutes:
    """Tests for /admin/import/*."""

    def test_file_upload(self, client, catalog, upload_feed):
        with open(FIXTURES_DIR / "units.csv", "rb") as f:
            response = client.post(
                "/admin/import/run",
                data={"source_id": "acme-upload"},
                files={"file": ("units.csv", f, "text/csv")},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["run"]["status"] == "success"
        assert body["run"]["sourceId"] == "acme-upload"
        assert body["result"]["inserted"] == 3
        assert len(catalog.list_buildings("acme-upload")) == 2

    def test_json_rows_partial(self, client, upload_feed):
        rows = [
            {"external_id": "p1", "bedrooms": 2, "price": 100, "area_total": 50},
            {"external_id": "p2", "bedrooms": 2, "area_total": 50},
        ]

        response = client.post(
            "/admin/import/run",
            data={"source_id": "acme-upload", "rows": json.dumps(rows)},
        )

        body = response.json()
        assert body["run"]["status"] == "partial"
        assert body["result"]["errors"] == [
            {
                "rowIndex": 2,
                "externalId": "p2",
                "error": "Invalid required fields - bedrooms: 2, price: missing, area: 50",
            }
        ]

    def test_complex_entity(self, client, catalog, upload_feed):
        rows = [{"id": "x", "complex_id": "tower", "price": "5"}]
        response = client.post(
            "/admin/import/run",
            data={"source_id": "acme-upload", "entity": "complex", "rows": json.dumps(rows)},
        )

        assert response.json()["run"]["entity"] == "complex"
        assert [b.external_id for b in catalog.list_buildings("acme-upload")] == ["tower"]
        assert catalog.list_units("acme-upload") == []

    def test_falls_back_to_feed_url(self, client, url_feed):
        response = client.post("/admin/import/run", data={"source_id": "acme-xml"})
        assert response.json()["run"]["status"] == "success"

    def test_failed_run_is_422(self, client, upload_feed):
        response = client.post(
            "/admin/import/run",
            data={"source_id": "acme-upload", "url": "https://missing.example.com/x.csv"},
        )
        assert response.status_code == 422
        assert response.json()["run"]["errorLog"] == "Fetch failed: 404"

    def test_no_payload_is_400(self, client, upload_feed):
        response = client.post("/admin/import/run", data={"source_id": "acme-upload"})
        assert response.status_code == 400

    def test_invalid_rows_json_is_400(self, client, upload_feed):
        response = client.post(
            "/admin/import/run", data={"source_id": "acme-upload", "rows": "[{"}
        )
        assert response.status_code == 400

    def test_unknown_source_is_404(self, client):
        response = client.post("/admin/import/run", data={"source_id": "nope", "rows": "[]"})
        assert response.status_code == 404

    def test_preview_upload(self, client, catalog):
        with open(FIXTURES_DIR / "units.json", "rb") as f:
            response = client.post(
                "/admin/import/preview",
                data={"limit": "2"},
                files={"file": ("units.json", f, "application/json")},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["totalRows"] == 3
        assert body["validRows"] == 2
        assert len(body["sampleRows"]) == 2
        assert catalog.list_runs() == []

    def test_preview_unparseable_upload(self, client):
        response = client.post(
            "/admin/import/preview",
            files={"file": ("broken.xml", b"<oops", "application/xml")},
        )
        assert response.status_code == 400
        assert "xml" in response.json()["error"]

    def test_preview_fetch_failure_is_502(self, client):
        response = client.post(
            "/admin/import/preview", data={"url": "https://missing.example.com/x.json"}
        )
        assert response.status_code == 502

    def test_runs_history(self, client, url_feed, upload_feed):
        client.post("/admin/feeds/acme-xml/refresh")
        client.post("/admin/import/run", data={"source_id": "acme-upload", "rows": "[]"})

        runs = client.get("/admin/import/runs").json()["runs"]
        assert len(runs) == 2
        only = client.get("/admin/import/runs", params={"source_id": "acme-xml"}).json()["runs"]
        assert [r["sourceId"] for r in only] == ["acme-xml"]

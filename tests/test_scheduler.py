"""
Tests for the Refresh Scheduler

Tests covering:
1. Due-feed selection (interval, never refreshed, ineligible feeds)
2. Refresh stamps last_auto_refresh on success and failure
3. A feed is never refreshed twice concurrently
4. One failing feed does not affect another
5. Scheduler lifecycle
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.catalog.repository import InMemoryCatalogRepository
from core.catalog.schema import Feed, FeedMode, RunStatus
from core.ingestion.errors import FeedFetchError
from core.ingestion.pipeline import IngestionEngine
from core.ingestion.scheduler import FeedRefreshScheduler
from feeds.mock import MockFeedFetcher
from utils.config import Config


FIXTURES_DIR = Path(__file__).parent / "fixtures"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def catalog():
    return InMemoryCatalogRepository()


@pytest.fixture
def fetcher():
    return MockFeedFetcher(
        {
            "https://a.example.com/feed.xml": (FIXTURES_DIR / "realty.xml").read_bytes(),
            "https://b.example.com/feed.json": (FIXTURES_DIR / "units.json").read_bytes(),
            "https://broken.example.com/feed.xml": FeedFetchError("https://broken", "500"),
        }
    )


@pytest.fixture
def scheduler(catalog, fetcher):
    config = Config(scheduler_enabled=False, scheduler_first_tick_delay=3600)
    return FeedRefreshScheduler(IngestionEngine(catalog, fetcher, config))


def _url_feed(feed_id, url, **kwargs):
    return Feed(id=feed_id, name=feed_id, mode=FeedMode.URL, url=url, auto_refresh=True, **kwargs)


async def _tick(scheduler, now=None):
    await scheduler.refresh_due_feeds(now)
    await scheduler.wait_idle()


# =============================================================================
# Due Selection
# =============================================================================


class TestDueFeeds:
    """Tests for CatalogRepository.list_feeds_due."""

    def test_never_refreshed_is_due(self, catalog):
        catalog.save_feed(_url_feed("a", "https://a.example.com/feed.xml"))
        assert [f.id for f in catalog.list_feeds_due(NOW)] == ["a"]

    def test_default_interval_is_a_day(self, catalog):
        catalog.save_feed(
            _url_feed("a", "https://a", last_auto_refresh=NOW - timedelta(hours=23))
        )
        catalog.save_feed(
            _url_feed("b", "https://b", last_auto_refresh=NOW - timedelta(hours=24))
        )
        assert [f.id for f in catalog.list_feeds_due(NOW)] == ["b"]

    def test_custom_interval(self, catalog):
        catalog.save_feed(
            _url_feed(
                "a",
                "https://a",
                refresh_interval_hours=2,
                last_auto_refresh=NOW - timedelta(hours=3),
            )
        )
        assert [f.id for f in catalog.list_feeds_due(NOW)] == ["a"]

    def test_ineligible_feeds_are_never_due(self, catalog):
        catalog.save_feed(Feed(id="upload", name="upload", auto_refresh=True))
        catalog.save_feed(_url_feed("inactive", "https://x", is_active=False))
        catalog.save_feed(Feed(id="manual", name="manual", mode=FeedMode.URL, url="https://y"))
        assert catalog.list_feeds_due(NOW) == []


# =============================================================================
# Refresh
# =============================================================================


class TestRefresh:
    """Tests for refresh_due_feeds / refresh_feed."""

    def test_refresh_ingests_and_stamps(self, scheduler, catalog):
        catalog.save_feed(_url_feed("a", "https://a.example.com/feed.xml"))

        asyncio.run(_tick(scheduler, NOW))

        runs = catalog.list_runs("a")
        assert len(runs) == 1
        assert runs[0].status is RunStatus.SUCCESS
        assert len(catalog.list_units("a")) == 2
        assert catalog.get_feed("a").last_auto_refresh is not None
        assert catalog.list_feeds_due(datetime.now(timezone.utc)) == []

    def test_failed_refresh_is_still_stamped(self, scheduler, catalog):
        catalog.save_feed(_url_feed("broken", "https://broken.example.com/feed.xml"))

        asyncio.run(_tick(scheduler, NOW))

        run = catalog.list_runs("broken")[0]
        assert run.status is RunStatus.FAILED
        assert run.error_log == "Fetch failed: 500"
        assert catalog.get_feed("broken").last_auto_refresh is not None

    def test_failures_are_isolated(self, scheduler, catalog):
        catalog.save_feed(_url_feed("broken", "https://broken.example.com/feed.xml"))
        catalog.save_feed(_url_feed("b", "https://b.example.com/feed.json"))

        asyncio.run(_tick(scheduler, NOW))

        assert catalog.list_runs("broken")[0].status is RunStatus.FAILED
        assert catalog.list_runs("b")[0].status is RunStatus.PARTIAL
        assert len(catalog.list_units("b")) == 2

    def test_feed_is_not_refreshed_twice_concurrently(self, scheduler, catalog, fetcher):
        fetcher.delay = 0.05
        catalog.save_feed(_url_feed("a", "https://a.example.com/feed.xml"))

        async def overlapping_ticks():
            await scheduler.refresh_due_feeds(NOW)
            assert scheduler.in_flight == {"a"}
            await scheduler.refresh_due_feeds(NOW)
            await scheduler.wait_idle()

        asyncio.run(overlapping_ticks())

        assert fetcher.requested == ["https://a.example.com/feed.xml"]
        assert len(catalog.list_runs("a")) == 1
        assert scheduler.in_flight == frozenset()

    def test_tick_skips_feed_claimed_elsewhere(self, scheduler, catalog, fetcher):
        catalog.save_feed(_url_feed("a", "https://a.example.com/feed.xml"))
        assert scheduler.claim("a")
        assert not scheduler.claim("a")

        asyncio.run(_tick(scheduler, NOW))

        assert fetcher.requested == []
        scheduler.release("a")
        assert scheduler.in_flight == frozenset()

    def test_unknown_feed_fails_without_writes(self, scheduler, catalog):
        feed = _url_feed("gone", "https://a.example.com/feed.xml")

        run = asyncio.run(scheduler.refresh_feed(feed))

        assert run.status is RunStatus.FAILED
        assert run.error_log == "Feed not found: gone"
        assert catalog.get_feed("gone") is None
        assert catalog.list_units("gone") == []

    def test_feed_deleted_during_fetch_leaves_no_records(self, scheduler, catalog, fetcher):
        fetcher.delay = 0.05
        catalog.save_feed(_url_feed("a", "https://a.example.com/feed.xml"))

        async def delete_mid_refresh():
            await scheduler.refresh_due_feeds(NOW)
            await asyncio.sleep(0.01)
            assert catalog.delete_feed("a")
            await scheduler.wait_idle()

        asyncio.run(delete_mid_refresh())

        assert catalog.get_feed("a") is None
        assert catalog.list_units("a") == []
        assert catalog.list_buildings("a") == []
        assert catalog.list_runs("a")[0].status is RunStatus.FAILED


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for start / shutdown."""

    def test_start_and_shutdown(self, scheduler):
        async def lifecycle():
            scheduler.start()
            assert scheduler.running
            scheduler.start()
            scheduler.shutdown()
            assert not scheduler.running

        asyncio.run(lifecycle())

    def test_shutdown_without_start(self, scheduler):
        scheduler.shutdown()
        assert not scheduler.running

"""
Tests for the in-memory catalog repository and catalog schema.
"""

from __future__ import annotations

import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from core.catalog.repository import (
    InMemoryCatalogRepository,
    get_catalog_repository,
    set_catalog_repository,
)
from core.catalog.schema import (
    Building,
    EntityKind,
    Feed,
    FeedMode,
    IngestionRun,
    RecordStatus,
    RunStatus,
    UnitListing,
    slugify,
)


T0 = datetime(2026, 10, 1, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_persist_path():
    """Create a temporary file path for persistence."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "catalog.json")


@pytest.fixture
def repository(temp_persist_path):
    return InMemoryCatalogRepository(persist_path=temp_persist_path)


def _unit(external_id="u1", source_id="feed"):
    return UnitListing(
        source_id=source_id,
        external_id=external_id,
        title="Flat",
        bedrooms=1,
        price=100,
        area_total=30,
        last_seen_at=T0,
    )


def _run(run_id, started_at, source_id="feed"):
    return IngestionRun(
        id=run_id,
        source_id=source_id,
        entity=EntityKind.UNIT,
        started_at=started_at,
        finished_at=started_at + timedelta(seconds=5),
        status=RunStatus.SUCCESS,
    )


# =============================================================================
# Schema
# =============================================================================


class TestSchema:
    """Tests for catalog entities."""

    def test_url_feed_requires_url(self):
        with pytest.raises(ValueError, match="url"):
            Feed(id="f", name="F", mode=FeedMode.URL)

    @pytest.mark.parametrize("hours", [0, 0.5, 168.5, 500])
    def test_interval_out_of_range_is_rejected(self, hours):
        with pytest.raises(ValueError, match="between 1 and 168"):
            Feed(id="f", name="F", refresh_interval_hours=hours)

    @pytest.mark.parametrize("hours", [1, 24, 168])
    def test_interval_bounds_are_inclusive(self, hours):
        assert Feed(id="f", name="F", refresh_interval_hours=hours).refresh_interval_hours == hours

    def test_auto_refresh_needs_url_mode(self):
        assert not Feed(id="f", name="F", auto_refresh=True).auto_refresh_enabled
        assert Feed(
            id="f", name="F", mode=FeedMode.URL, url="https://x", auto_refresh=True
        ).auto_refresh_enabled

    def test_unit_round_trip_keeps_enums_and_dates(self):
        unit = _unit()
        restored = UnitListing.from_dict(unit.to_dict())
        assert restored == unit
        assert restored.status is RecordStatus.ACTIVE

    def test_candidate_fields_exclude_identity(self):
        fields = _unit().candidate_fields()
        assert "id" not in fields
        assert "external_id" not in fields
        assert "source_id" not in fields
        assert fields["price"] == 100

    @pytest.mark.parametrize(
        "title, slug",
        [
            ("Riverside Park", "riverside-park"),
            ("  ЖК Ёлки  ", "жк-елки"),
            ("2-room in Tower #5", "2-room-in-tower-5"),
            ("!!!", "item"),
        ],
    )
    def test_slugify(self, title, slug):
        assert slugify(title) == slug


# =============================================================================
# Records
# =============================================================================


class TestRecords:
    """Tests for insert / merge / list."""

    def test_insert_assigns_id(self, repository):
        unit = repository.insert_unit(_unit())
        assert unit.id
        assert repository.get_unit(unit.id).external_id == "u1"

    def test_list_returns_copies(self, repository):
        repository.insert_unit(_unit())
        listed = repository.list_units("feed")[0]
        listed.price = 1
        assert repository.list_units("feed")[0].price == 100

    def test_merge_applies_changes(self, repository):
        unit = repository.insert_unit(_unit())
        merged = repository.merge_unit(unit.id, {"status": RecordStatus.HIDDEN})
        assert merged.status is RecordStatus.HIDDEN

    def test_merge_unknown_field_raises(self, repository):
        unit = repository.insert_unit(_unit())
        with pytest.raises(AttributeError):
            repository.merge_unit(unit.id, {"colour": "red"})

    def test_merge_unknown_record_raises(self, repository):
        with pytest.raises(KeyError):
            repository.merge_building("missing", {"title": "x"})

    def test_list_is_scoped_to_source(self, repository):
        repository.insert_unit(_unit("a", "one"))
        repository.insert_unit(_unit("b", "two"))
        assert [u.external_id for u in repository.list_units("one")] == ["a"]


# =============================================================================
# Feeds and Runs
# =============================================================================


class TestFeedsAndRuns:
    """Tests for feed administration and run history."""

    def test_delete_feed_removes_its_records(self, repository):
        repository.save_feed(Feed(id="feed", name="Feed"))
        repository.insert_unit(_unit())
        repository.insert_building(Building("feed", "b1", "B"))
        repository.insert_unit(_unit("other", "elsewhere"))

        assert repository.delete_feed("feed") is True
        assert repository.list_units("feed") == []
        assert repository.list_buildings("feed") == []
        assert len(repository.list_units("elsewhere")) == 1
        assert repository.delete_feed("feed") is False

    def test_stamp_unknown_feed_raises(self, repository):
        with pytest.raises(KeyError):
            repository.stamp_feed_refresh("missing", T0)

    def test_runs_newest_first(self, repository):
        repository.append_run(_run("old", T0))
        repository.append_run(_run("new", T0 + timedelta(hours=1)))
        repository.append_run(_run("elsewhere", T0, source_id="other"))

        assert [r.id for r in repository.list_runs("feed")] == ["new", "old"]
        assert len(repository.list_runs()) == 3


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    """Tests for JSON-file persistence."""

    def test_data_survives_reload(self, repository, temp_persist_path):
        repository.save_feed(Feed(id="feed", name="Feed", mapping={"price": "Cost"}))
        unit = repository.insert_unit(_unit())
        repository.append_run(_run("r1", T0))

        reloaded = InMemoryCatalogRepository(persist_path=temp_persist_path)

        assert reloaded.get_feed("feed").mapping == {"price": "Cost"}
        assert reloaded.get_unit(unit.id).last_seen_at == T0
        assert reloaded.list_runs()[0].id == "r1"

    def test_transaction_persists_on_exit(self, repository, temp_persist_path):
        with repository.transaction():
            repository.insert_unit(_unit("a"))
            repository.insert_unit(_unit("b"))
            assert not Path(temp_persist_path).exists()

        assert len(InMemoryCatalogRepository(temp_persist_path).list_units("feed")) == 2

    def test_failed_transaction_is_not_persisted(self, repository, temp_persist_path):
        with pytest.raises(RuntimeError):
            with repository.transaction():
                repository.insert_unit(_unit("a"))
                raise RuntimeError("boom")

        assert not Path(temp_persist_path).exists()

    def test_corrupt_file_is_ignored(self, temp_persist_path):
        Path(temp_persist_path).write_text("{not json", encoding="utf-8")
        repository = InMemoryCatalogRepository(temp_persist_path)
        assert repository.list_feeds() == []

    @pytest.mark.parametrize(
        "bad_unit",
        [
            {"id": "u1"},
            {"id": "u1", "source_id": "feed", "external_id": "u1", "status": "bogus"},
        ],
    )
    def test_partially_damaged_file_loads_nothing(self, temp_persist_path, bad_unit):
        good = {"feeds": [Feed(id="feed", name="Feed").to_dict()], "units": [bad_unit]}
        Path(temp_persist_path).write_text(json.dumps(good), encoding="utf-8")

        repository = InMemoryCatalogRepository(temp_persist_path)

        assert repository.list_feeds() == []
        assert repository.list_units("feed") == []


class TestSingleton:
    """Tests for the process-wide repository."""

    def test_set_and_get(self):
        custom = InMemoryCatalogRepository()
        set_catalog_repository(custom)
        try:
            assert get_catalog_repository() is custom
        finally:
            set_catalog_repository(None)

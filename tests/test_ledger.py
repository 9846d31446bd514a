"""
Tests for the Run Ledger and error-log formatting.
"""

from __future__ import annotations

import pytest

from core.catalog.repository import InMemoryCatalogRepository
from core.catalog.schema import (
    EntityKind,
    RowError,
    RunStats,
    RunStatus,
    UpsertResult,
)
from core.ingestion.errors import FeedFetchError
from core.ingestion.ledger import RunLedger, classify_outcome
from utils.formatting import format_error_log, format_row_error


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def catalog():
    return InMemoryCatalogRepository()


@pytest.fixture
def ledger(catalog):
    return RunLedger(catalog, error_log_limit=3)


def _errors(count):
    return [RowError(row_index=i, error="Missing price", external_id=f"p{i}") for i in range(1, count + 1)]


# =============================================================================
# Classification
# =============================================================================


class TestClassifyOutcome:
    """Tests for classify_outcome."""

    @pytest.mark.parametrize(
        "errors, rows, expected",
        [
            (0, 10, RunStatus.SUCCESS),
            (0, 0, RunStatus.SUCCESS),
            (1, 10, RunStatus.PARTIAL),
            (9, 10, RunStatus.PARTIAL),
            (10, 10, RunStatus.FAILED),
        ],
    )
    def test_classification(self, errors, rows, expected):
        assert classify_outcome(errors, rows) is expected


# =============================================================================
# Recording
# =============================================================================


class TestRunRecorder:
    """Tests for RunRecorder.finish / fail."""

    def test_finish_records_run(self, ledger, catalog):
        result = UpsertResult(inserted=2, updated=1, hidden=1, errors=_errors(1))

        run = ledger.start("feed", EntityKind.UNIT).finish(result, row_count=4)

        assert run.status is RunStatus.PARTIAL
        assert run.stats == RunStats(2, 1, 1)
        assert run.error_log.splitlines() == ["1 row(s) rejected", "Row 1 (p1): Missing price"]
        assert run.finished_at >= run.started_at
        assert catalog.list_runs("feed") == [run]

    def test_successful_run_has_no_log(self, ledger):
        run = ledger.start("feed", EntityKind.BUILDING).finish(UpsertResult(inserted=1), 1)
        assert run.status is RunStatus.SUCCESS
        assert run.error_log is None
        assert "errorLog" not in run.to_dict()

    def test_error_log_is_capped(self, ledger):
        result = UpsertResult(errors=_errors(5))
        run = ledger.start("feed", EntityKind.UNIT).finish(result, row_count=5)

        lines = run.error_log.splitlines()
        assert run.status is RunStatus.FAILED
        assert lines[0] == "5 row(s) rejected"
        assert len([line for line in lines if line.startswith("Row ")]) == 3
        assert lines[-1] == "... and 2 more"

    def test_fail_records_exception(self, ledger, catalog):
        run = ledger.start("feed", EntityKind.UNIT).fail(FeedFetchError("https://x", "503"))

        assert run.status is RunStatus.FAILED
        assert run.stats == RunStats()
        assert run.error_log == "Fetch failed: 503"
        assert catalog.list_runs() == [run]

    def test_run_is_recorded_once(self, ledger):
        recorder = ledger.start("feed", EntityKind.UNIT)
        recorder.finish(UpsertResult(), 0)
        with pytest.raises(RuntimeError):
            recorder.fail(ValueError("late"))

    def test_wire_shape(self, ledger):
        run = ledger.start("feed", EntityKind.UNIT).fail(ValueError("boom"))
        data = run.to_dict()

        assert set(data) == {
            "id", "sourceId", "entity", "startedAt", "finishedAt", "status", "stats", "errorLog"
        }
        assert data["entity"] == "property"
        assert data["stats"] == {"inserted": 0, "updated": 0, "hidden": 0}


# =============================================================================
# Formatting
# =============================================================================


class TestFormatting:
    """Tests for error-log helpers."""

    def test_row_without_external_id(self):
        assert format_row_error(3, "Missing external_id") == "Row 3 (-): Missing external_id"

    def test_no_errors_no_log(self):
        assert format_error_log([]) is None

    def test_default_limit_is_fifty(self):
        log = format_error_log(_errors(60))
        assert len(log.splitlines()) == 1 + 50 + 1

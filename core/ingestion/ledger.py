"""
Run Ledger - Append-Only History of Ingestion Runs

Each pipeline execution is recorded once it is over, whatever the outcome.
A run is opened with RunLedger.start() and closed with exactly one of
RunRecorder.finish() or RunRecorder.fail().
"""

from __future__ import annotations

import logging
from typing import Optional

from core.catalog.repository import CatalogRepository, new_id
from core.catalog.schema import (
    EntityKind,
    IngestionRun,
    RunStats,
    RunStatus,
    UpsertResult,
    utcnow,
)
from utils.formatting import format_error_log, format_stats


logger = logging.getLogger(__name__)

DEFAULT_ERROR_LOG_LIMIT = 50


def classify_outcome(error_count: int, row_count: int) -> RunStatus:
    """
    Classify a completed run.

    Returns:
        SUCCESS with no row errors, FAILED when every row was rejected,
        PARTIAL otherwise
    """
    if error_count == 0:
        return RunStatus.SUCCESS
    if error_count >= row_count:
        return RunStatus.FAILED
    return RunStatus.PARTIAL


class RunRecorder:
    """Open run; closes into an immutable IngestionRun."""

    def __init__(
        self,
        catalog: CatalogRepository,
        source_id: str,
        entity: EntityKind,
        error_log_limit: int = DEFAULT_ERROR_LOG_LIMIT,
    ):
        self.catalog = catalog
        self.source_id = source_id
        self.entity = entity
        self.error_log_limit = error_log_limit
        self.run_id = new_id()
        self.started_at = utcnow()
        self._closed = False

    def _append(self, run: IngestionRun) -> IngestionRun:
        if self._closed:
            raise RuntimeError(f"Run {self.run_id} is already recorded")
        self._closed = True
        self.catalog.append_run(run)
        return run

    def finish(self, result: UpsertResult, row_count: int) -> IngestionRun:
        """
        Record a run that reached reconciliation.

        Args:
            result: Reconciliation outcome
            row_count: Number of rows the pass received

        Returns:
            The recorded run
        """
        status = classify_outcome(len(result.errors), row_count)
        run = IngestionRun(
            id=self.run_id,
            source_id=self.source_id,
            entity=self.entity,
            started_at=self.started_at,
            finished_at=utcnow(),
            status=status,
            stats=result.stats,
            error_log=format_error_log(result.errors, self.error_log_limit),
        )
        logger.info(
            "Run %s for %s/%s: %s (%s, %d errors)",
            run.id,
            self.source_id,
            self.entity.value,
            status.value,
            format_stats(result.inserted, result.updated, result.hidden),
            len(result.errors),
        )
        return self._append(run)

    def fail(self, exc: BaseException) -> IngestionRun:
        """Record a run aborted before or during reconciliation."""
        run = IngestionRun(
            id=self.run_id,
            source_id=self.source_id,
            entity=self.entity,
            started_at=self.started_at,
            finished_at=utcnow(),
            status=RunStatus.FAILED,
            stats=RunStats(),
            error_log=str(exc) or type(exc).__name__,
        )
        logger.error(
            "Run %s for %s/%s failed: %s", run.id, self.source_id, self.entity.value, run.error_log
        )
        return self._append(run)


class RunLedger:
    """Factory for run recorders plus read access to the history."""

    def __init__(self, catalog: CatalogRepository, error_log_limit: int = DEFAULT_ERROR_LOG_LIMIT):
        self.catalog = catalog
        self.error_log_limit = error_log_limit

    def start(self, source_id: str, entity: EntityKind) -> RunRecorder:
        return RunRecorder(self.catalog, source_id, entity, self.error_log_limit)

    def history(self, source_id: Optional[str] = None) -> list[IngestionRun]:
        """Recorded runs, newest first."""
        return self.catalog.list_runs(source_id)

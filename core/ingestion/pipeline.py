"""
Ingestion Pipeline - Fetch, Parse, Aggregate, Reconcile, Record

IngestionEngine is the single entry point shared by the admin routes, the
CLI and the refresh scheduler.

Flow:
    bytes (fetched or uploaded) -> parse_rows -> aggregate_buildings
        -> reconcile_buildings -> reconcile_units -> RunLedger

Fetching and parsing run off the event loop. Everything from aggregation
to the liveness sweep runs inside one catalog transaction with no awaits,
so concurrent refreshes of different feeds only serialise at that point.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional

from core.catalog.repository import CatalogRepository, get_catalog_repository
from core.catalog.schema import EntityKind, FeedFormat, IngestionRun, UpsertResult
from core.ingestion.aggregator import aggregate_buildings
from core.ingestion.errors import FeedError
from core.ingestion.ledger import RunLedger
from core.ingestion.parsers import guess_format, parse_rows
from core.ingestion.reconciler import reconcile_buildings, reconcile_units
from core.ingestion.rows import RawRow
from feeds.base import BaseFeedFetcher
from feeds.http import HttpFeedFetcher
from utils.config import Config


logger = logging.getLogger(__name__)


class IngestionEngine:
    """
    Orchestrates one ingestion pass per call.

    Args:
        catalog: Catalog collaborator (defaults to the process singleton)
        fetcher: Payload fetcher for URL feeds (defaults to HTTP)
        config: Application configuration
    """

    def __init__(
        self,
        catalog: Optional[CatalogRepository] = None,
        fetcher: Optional[BaseFeedFetcher] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or Config.load()
        self.catalog = catalog or get_catalog_repository(self.config.catalog_path)
        self.fetcher = fetcher or HttpFeedFetcher(timeout=self.config.request_timeout)
        self.ledger = RunLedger(self.catalog, self.config.error_log_limit)

    # =========================================================================
    # Feed Settings
    # =========================================================================

    def resolve_format(self, source_id: str, hint: Optional[str] = None) -> FeedFormat:
        """Format from the filename / URL hint, else the feed's declared format."""
        feed = self.catalog.get_feed(source_id)
        return guess_format(hint, feed.format if feed else None)

    def resolve_mapping(
        self, source_id: str, mapping: Optional[Mapping[str, str]] = None
    ) -> dict[str, str]:
        """Explicit mapping, else the one stored on the feed."""
        if mapping:
            return dict(mapping)
        feed = self.catalog.get_feed(source_id)
        return dict(feed.mapping) if feed else {}

    # =========================================================================
    # Core Operation
    # =========================================================================

    def ingest(
        self,
        source_id: str,
        entity: EntityKind,
        content: Optional[bytes] = None,
        rows: Optional[list[RawRow]] = None,
        mapping: Optional[Mapping[str, str]] = None,
        filename: Optional[str] = None,
    ) -> UpsertResult:
        """
        Reconcile one batch against the catalog.

        Either `content` (raw bytes, format detected from `filename`) or
        already-parsed `rows` must be given.

        For units the pass is two-phase: buildings aggregated from the same
        rows are reconciled first so every unit can link to its building,
        then the units themselves. The result reported is that of the
        requested entity kind.

        Raises:
            FeedParseError: If `content` cannot be parsed
            FeedError: If the feed does not exist (or was deleted mid-run)
            ValueError: If neither content nor rows are given
        """
        if rows is None:
            if content is None:
                raise ValueError("ingest() needs either content or rows")
            rows = parse_rows(content, self.resolve_format(source_id, filename))

        mapping = self.resolve_mapping(source_id, mapping)

        with self.catalog.transaction():
            # Checked under the lock so a concurrent delete_feed cannot leave orphans
            if self.catalog.get_feed(source_id) is None:
                raise FeedError(f"Feed not found: {source_id}")
            buildings = aggregate_buildings(rows, source_id, mapping)
            building_result = reconcile_buildings(self.catalog, source_id, buildings)
            if entity is EntityKind.BUILDING:
                return building_result
            return reconcile_units(self.catalog, source_id, rows, mapping)

    async def load_rows(
        self,
        source_id: str,
        content: Optional[bytes] = None,
        url: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> list[RawRow]:
        """
        Fetch (when only a URL is given) and parse a payload off the event loop.

        Raises:
            FeedError: On fetch or parse failure, or when no payload is given
        """
        if content is None:
            if not url:
                raise FeedError("No payload: provide a file, rows or a URL")
            content = await self.fetcher.fetch(url)
        fmt = self.resolve_format(source_id, filename or url)
        return await asyncio.to_thread(parse_rows, content, fmt)

    async def execute(
        self,
        source_id: str,
        entity: EntityKind,
        content: Optional[bytes] = None,
        rows: Optional[list[RawRow]] = None,
        url: Optional[str] = None,
        filename: Optional[str] = None,
        mapping: Optional[Mapping[str, str]] = None,
    ) -> tuple[IngestionRun, Optional[UpsertResult]]:
        """
        Execute one recorded pass.

        Pipeline-fatal errors never propagate: they become a `failed` run
        with the exception message as its log and the catalog untouched.

        Returns:
            The recorded IngestionRun, plus the reconciliation result when
            the pass got that far (None for failed runs)
        """
        recorder = self.ledger.start(source_id, entity)
        try:
            if rows is None:
                rows = await self.load_rows(source_id, content, url, filename)
            result = self.ingest(source_id, entity, rows=rows, mapping=mapping)
        except FeedError as e:
            logger.error("Ingestion of %s aborted: %s", source_id, e)
            return recorder.fail(e), None
        except Exception as e:
            logger.exception("Unexpected error while ingesting %s", source_id)
            return recorder.fail(e), None

        return recorder.finish(result, len(rows)), result

    async def run(
        self,
        source_id: str,
        entity: EntityKind,
        content: Optional[bytes] = None,
        rows: Optional[list[RawRow]] = None,
        url: Optional[str] = None,
        filename: Optional[str] = None,
        mapping: Optional[Mapping[str, str]] = None,
    ) -> IngestionRun:
        """Execute one recorded pass and return only its run record."""
        run, _ = await self.execute(source_id, entity, content, rows, url, filename, mapping)
        return run

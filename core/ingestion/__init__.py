"""
Listing Feed Engine - Ingestion Layer

Turns third-party listing feeds (CSV, XLSX, JSON, realty XML) into
canonical catalog records and reconciles them against what a source
already owns: insert new keys, update known keys, hide keys that vanished.

IngestionEngine is the single entry point; FeedRefreshScheduler drives it
periodically for URL feeds.
"""

from core.ingestion.errors import FeedError, FeedFetchError, FeedParseError
from core.ingestion.parsers import guess_format, parse_rows
from core.ingestion.resolver import FIELD_ALIASES, resolve_field
from core.ingestion.aggregator import aggregate_buildings
from core.ingestion.reconciler import build_unit, reconcile_buildings, reconcile_units
from core.ingestion.ledger import RunLedger, RunRecorder, classify_outcome
from core.ingestion.preview import PreviewResult, PreviewRow, preview_rows
from core.ingestion.pipeline import IngestionEngine
from core.ingestion.scheduler import FeedRefreshScheduler

__all__ = [
    # Errors
    "FeedError",
    "FeedFetchError",
    "FeedParseError",
    # Parsing
    "guess_format",
    "parse_rows",
    "FIELD_ALIASES",
    "resolve_field",
    # Aggregation and reconciliation
    "aggregate_buildings",
    "build_unit",
    "reconcile_buildings",
    "reconcile_units",
    # Run ledger
    "RunLedger",
    "RunRecorder",
    "classify_outcome",
    # Preview
    "PreviewResult",
    "PreviewRow",
    "preview_rows",
    # Orchestration
    "IngestionEngine",
    "FeedRefreshScheduler",
]

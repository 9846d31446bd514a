"""
Listing Feed Engine - Core

Pipeline:
1. Fetch (URL feeds) or receive (uploads) a raw payload
2. Parse into raw rows (CSV / XLSX / JSON / realty XML)
3. Aggregate building records out of unit rows
4. Reconcile buildings, then units, against the catalog
5. Record the run in the ledger
"""

from .catalog import (
    Building,
    CatalogRepository,
    EntityKind,
    Feed,
    IngestionRun,
    InMemoryCatalogRepository,
    RecordStatus,
    RowError,
    RunStatus,
    UnitListing,
    UpsertResult,
    get_catalog_repository,
)
from .ingestion import (
    FeedError,
    FeedFetchError,
    FeedParseError,
    FeedRefreshScheduler,
    IngestionEngine,
    preview_rows,
)

__all__ = [
    # Catalog
    "Building",
    "CatalogRepository",
    "EntityKind",
    "Feed",
    "IngestionRun",
    "InMemoryCatalogRepository",
    "RecordStatus",
    "RowError",
    "RunStatus",
    "UnitListing",
    "UpsertResult",
    "get_catalog_repository",
    # Ingestion
    "FeedError",
    "FeedFetchError",
    "FeedParseError",
    "FeedRefreshScheduler",
    "IngestionEngine",
    "preview_rows",
]

"""
Catalog - Canonical Listing Entities and Their Store

Defines UnitListing / Building / Feed / IngestionRun and the abstract
repository the feed engine reconciles against.
"""

from core.catalog.schema import (
    Building,
    Category,
    DealType,
    EntityKind,
    Feed,
    FeedFormat,
    FeedMode,
    IngestionRun,
    RecordStatus,
    RowError,
    RunStats,
    RunStatus,
    UnitListing,
    UpsertResult,
    slugify,
    utcnow,
)
from core.catalog.repository import (
    CatalogRepository,
    InMemoryCatalogRepository,
    get_catalog_repository,
    set_catalog_repository,
    new_id,
)

__all__ = [
    # Entities
    "Building",
    "UnitListing",
    "Feed",
    "IngestionRun",
    "RunStats",
    "RowError",
    "UpsertResult",
    # Enums
    "Category",
    "DealType",
    "EntityKind",
    "FeedFormat",
    "FeedMode",
    "RecordStatus",
    "RunStatus",
    # Helpers
    "slugify",
    "utcnow",
    "new_id",
    # Repository
    "CatalogRepository",
    "InMemoryCatalogRepository",
    "get_catalog_repository",
    "set_catalog_repository",
]

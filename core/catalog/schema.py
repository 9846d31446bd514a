"""
Catalog Schema - Canonical Entities Owned by the Feed Engine

Defines the two canonical listing shapes every feed is normalised into
(UnitListing and Building), the Feed configuration record, and the
append-only IngestionRun history entry.

Identity rule shared by both listing shapes:
    (source_id, external_id) is unique per entity kind and stable across
    re-ingestion. The internal id is assigned once on insert and never changes.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# =============================================================================
# Enums
# =============================================================================


class RecordStatus(Enum):
    """Liveness of a catalog record, independent of physical deletion."""

    ACTIVE = "active"
    HIDDEN = "hidden"
    ARCHIVED = "archived"


class DealType(Enum):
    """Commercial deal type of a unit."""

    SALE = "sale"
    RENT = "rent"


class Category(Enum):
    """Catalog tab a unit is listed under."""

    NEWBUILD = "newbuild"
    SECONDARY = "secondary"
    RENT = "rent"


class FeedMode(Enum):
    """How a feed delivers its payload."""

    UPLOAD = "upload"
    URL = "url"


class FeedFormat(Enum):
    """Declared payload format of a feed."""

    CSV = "csv"
    XLSX = "xlsx"
    XML = "xml"
    JSON = "json"


class EntityKind(Enum):
    """Target entity kind of an ingestion run."""

    UNIT = "property"
    BUILDING = "complex"


class RunStatus(Enum):
    """Outcome classification of an ingestion run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# Helpers
# =============================================================================


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def slugify(text: str) -> str:
    """
    Build a URL slug from a title.

    Keeps latin letters, digits and cyrillic; collapses whitespace,
    underscores and dashes into single dashes.
    """
    base = (text or "").strip().lower().replace("ё", "е")
    base = re.sub(r"[^a-z0-9Ѐ-ӿ\s_-]", "", base)
    base = re.sub(r"[\s_-]+", "-", base).strip("-")
    return base or "item"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# =============================================================================
# Feed
# =============================================================================


# Allowed range for a feed's own refresh interval (one hour to one week)
MIN_REFRESH_INTERVAL_HOURS = 1
MAX_REFRESH_INTERVAL_HOURS = 168


@dataclass
class Feed:
    """
    A configured external listing source.

    Created by an administrator. The scheduler only ever touches
    `last_auto_refresh`; ingestion runs mutate the liveness of the
    feed's catalog records, never the feed itself.
    """

    id: str
    name: str
    mode: FeedMode = FeedMode.UPLOAD
    format: FeedFormat = FeedFormat.JSON
    is_active: bool = True
    url: Optional[str] = None

    # Logical field -> source column overrides
    mapping: dict[str, str] = field(default_factory=dict)

    # Auto refresh (URL mode only)
    auto_refresh: bool = False
    refresh_interval_hours: Optional[float] = None
    last_auto_refresh: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        """Validate feed definition."""
        if not self.id:
            raise ValueError("feed id is required")
        if not self.name:
            raise ValueError("feed name is required")
        if self.mode is FeedMode.URL and not self.url:
            raise ValueError("url is required for url-mode feeds")
        if self.refresh_interval_hours is not None and not (
            MIN_REFRESH_INTERVAL_HOURS
            <= self.refresh_interval_hours
            <= MAX_REFRESH_INTERVAL_HOURS
        ):
            raise ValueError(
                f"refresh_interval_hours must be between {MIN_REFRESH_INTERVAL_HOURS}"
                f" and {MAX_REFRESH_INTERVAL_HOURS}"
            )

    @property
    def auto_refresh_enabled(self) -> bool:
        """True when the scheduler is allowed to pull this feed."""
        return (
            self.is_active
            and self.mode is FeedMode.URL
            and bool(self.url)
            and self.auto_refresh
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert feed to dictionary for serialisation."""
        return {
            "id": self.id,
            "name": self.name,
            "mode": self.mode.value,
            "format": self.format.value,
            "is_active": self.is_active,
            "url": self.url,
            "mapping": dict(self.mapping),
            "auto_refresh": self.auto_refresh,
            "refresh_interval_hours": self.refresh_interval_hours,
            "last_auto_refresh": _iso(self.last_auto_refresh),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Feed":
        """Create feed from dictionary."""
        return cls(
            id=data["id"],
            name=data["name"],
            mode=FeedMode(data.get("mode", "upload")),
            format=FeedFormat(data.get("format", "json")),
            is_active=bool(data.get("is_active", True)),
            url=data.get("url"),
            mapping=dict(data.get("mapping") or {}),
            auto_refresh=bool(data.get("auto_refresh", False)),
            refresh_interval_hours=data.get("refresh_interval_hours"),
            last_auto_refresh=_parse_dt(data.get("last_auto_refresh")),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


# =============================================================================
# Listing Entities
# =============================================================================


# Fields the reconciler never copies from a candidate onto an existing record
IDENTITY_FIELDS = frozenset({"id", "source_id", "external_id"})


class _Record:
    """Shared serialisation for catalog records."""

    _ENUM_FIELDS: dict[str, type] = {}
    _DATETIME_FIELDS = ("last_seen_at", "updated_at")

    def to_dict(self) -> dict[str, Any]:
        """Convert record to a JSON-safe dictionary."""
        data = asdict(self)
        for name in self._ENUM_FIELDS:
            data[name] = getattr(self, name).value
        for name in self._DATETIME_FIELDS:
            data[name] = _iso(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Create record from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        for name, enum_type in cls._ENUM_FIELDS.items():
            if name in values and values[name] is not None:
                values[name] = enum_type(values[name])
        for name in cls._DATETIME_FIELDS:
            values[name] = _parse_dt(values.get(name))
        return cls(**values)

    def candidate_fields(self) -> dict[str, Any]:
        """Fields a reconciliation pass merges into an existing record."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in IDENTITY_FIELDS
        }


@dataclass
class Building(_Record):
    """
    Building ("complex") aggregated from one or more unit rows.

    `price_from` / `area_from` are always the minimum across the rows
    contributing to the building in the current pass.
    """

    source_id: str
    external_id: str
    title: str
    slug: str = ""
    category: Category = Category.NEWBUILD
    district: str = ""
    metro: list[str] = field(default_factory=list)
    price_from: Optional[float] = None
    area_from: Optional[float] = None
    images: list[str] = field(default_factory=list)
    developer: Optional[str] = None
    building_class: Optional[str] = None
    finish_type: Optional[str] = None
    handover_date: Optional[str] = None
    description: Optional[str] = None
    status: RecordStatus = RecordStatus.ACTIVE
    last_seen_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: str = ""

    _ENUM_FIELDS = {"category": Category, "status": RecordStatus}


@dataclass
class UnitListing(_Record):
    """An individually sellable or rentable unit ("property")."""

    source_id: str
    external_id: str
    title: str
    bedrooms: float
    price: float
    area_total: float
    slug: str = ""
    deal_type: DealType = DealType.SALE
    category: Category = Category.NEWBUILD
    old_price: Optional[float] = None
    price_period: Optional[str] = None
    area_living: Optional[float] = None
    area_kitchen: Optional[float] = None
    floor: Optional[float] = None
    floors_total: Optional[float] = None
    district: str = ""
    metro: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    description: Optional[str] = None
    lot_number: str = ""
    renovation: Optional[str] = None
    is_euroflat: bool = False
    building_section: Optional[str] = None
    building_state: Optional[str] = None
    ready_quarter: Optional[float] = None
    built_year: Optional[float] = None
    building_id: Optional[str] = None
    building_external_id: Optional[str] = None
    status: RecordStatus = RecordStatus.ACTIVE
    last_seen_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: str = ""

    _ENUM_FIELDS = {
        "deal_type": DealType,
        "category": Category,
        "status": RecordStatus,
    }


# =============================================================================
# Reconciliation Results
# =============================================================================


@dataclass(frozen=True)
class RowError:
    """Per-row diagnostic collected during reconciliation."""

    row_index: int  # 1-based position in the batch
    error: str
    external_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by the HTTP layer."""
        data: dict[str, Any] = {"rowIndex": self.row_index, "error": self.error}
        if self.external_id:
            data["externalId"] = self.external_id
        return data


@dataclass
class UpsertResult:
    """Counters and diagnostics of one reconciliation pass."""

    inserted: int = 0
    updated: int = 0
    hidden: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def stats(self) -> "RunStats":
        return RunStats(self.inserted, self.updated, self.hidden)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "hidden": self.hidden,
            "errors": [e.to_dict() for e in self.errors],
        }


# =============================================================================
# Ingestion Run
# =============================================================================


@dataclass(frozen=True)
class RunStats:
    """Aggregate statistics of a run."""

    inserted: int = 0
    updated: int = 0
    hidden: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"inserted": self.inserted, "updated": self.updated, "hidden": self.hidden}


@dataclass(frozen=True)
class IngestionRun:
    """
    One execution of the pipeline against one feed and one entity kind.

    Immutable once finished; runs are append-only per feed.
    """

    id: str
    source_id: str
    entity: EntityKind
    started_at: datetime
    finished_at: datetime
    status: RunStatus
    stats: RunStats = field(default_factory=RunStats)
    error_log: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Wire shape of a run record."""
        data: dict[str, Any] = {
            "id": self.id,
            "sourceId": self.source_id,
            "entity": self.entity.value,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "status": self.status.value,
            "stats": self.stats.to_dict(),
        }
        if self.error_log:
            data["errorLog"] = self.error_log
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IngestionRun":
        stats = data.get("stats") or {}
        return cls(
            id=data["id"],
            source_id=data["sourceId"],
            entity=EntityKind(data["entity"]),
            started_at=datetime.fromisoformat(data["startedAt"]),
            finished_at=datetime.fromisoformat(data["finishedAt"]),
            status=RunStatus(data["status"]),
            stats=RunStats(
                inserted=stats.get("inserted", 0),
                updated=stats.get("updated", 0),
                hidden=stats.get("hidden", 0),
            ),
            error_log=data.get("errorLog"),
        )

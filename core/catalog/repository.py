"""
Catalog Repository - Key-Indexed Store Consumed by the Feed Engine

The engine only talks to the abstract CatalogRepository. The in-memory
implementation below, with optional JSON-file persistence, backs local
development and the test suite. Production deployments plug in their own
document store behind the same interface.

All catalog mutation performed by an ingestion pass must happen inside a
single `transaction()` block: the liveness sweep needs a consistent view
of everything a source currently owns.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Optional

from core.catalog.schema import (
    Building,
    Feed,
    IngestionRun,
    UnitListing,
    utcnow,
)


logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_HOURS = 24.0


def new_id() -> str:
    """Fresh internal identifier."""
    return str(uuid.uuid4())


# =============================================================================
# Interface
# =============================================================================


class CatalogRepository(ABC):
    """
    Abstract catalog collaborator.

    Records returned by the list methods are snapshots owned by the caller;
    changes are applied only through insert_* and merge_*.
    """

    @abstractmethod
    def transaction(self):
        """Context manager guarding the whole store as one critical section."""
        ...

    # --- Buildings ---

    @abstractmethod
    def list_buildings(self, source_id: str) -> list[Building]:
        ...

    @abstractmethod
    def insert_building(self, building: Building) -> Building:
        ...

    @abstractmethod
    def merge_building(self, record_id: str, changes: dict[str, Any]) -> Building:
        ...

    # --- Units ---

    @abstractmethod
    def list_units(self, source_id: str) -> list[UnitListing]:
        ...

    @abstractmethod
    def insert_unit(self, unit: UnitListing) -> UnitListing:
        ...

    @abstractmethod
    def merge_unit(self, record_id: str, changes: dict[str, Any]) -> UnitListing:
        ...

    # --- Feeds ---

    @abstractmethod
    def get_feed(self, feed_id: str) -> Optional[Feed]:
        ...

    @abstractmethod
    def list_feeds(self) -> list[Feed]:
        ...

    @abstractmethod
    def save_feed(self, feed: Feed) -> Feed:
        ...

    @abstractmethod
    def delete_feed(self, feed_id: str) -> bool:
        ...

    @abstractmethod
    def stamp_feed_refresh(self, feed_id: str, at: datetime) -> None:
        ...

    def list_feeds_due(
        self,
        now: Optional[datetime] = None,
        default_interval_hours: float = DEFAULT_REFRESH_INTERVAL_HOURS,
    ) -> list[Feed]:
        """
        Feeds eligible for an automatic refresh at `now`.

        A feed is due when it is active, URL-mode, auto-refresh enabled and
        at least one refresh interval has elapsed since its last refresh.
        Feeds that were never refreshed are always due.
        """
        now = now or utcnow()
        due = []
        for feed in self.list_feeds():
            if not feed.auto_refresh_enabled:
                continue
            interval = timedelta(
                hours=feed.refresh_interval_hours or default_interval_hours
            )
            last = feed.last_auto_refresh
            if last is None or now - last >= interval:
                due.append(feed)
        return due

    # --- Runs ---

    @abstractmethod
    def append_run(self, run: IngestionRun) -> None:
        ...

    @abstractmethod
    def list_runs(self, source_id: Optional[str] = None) -> list[IngestionRun]:
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================


class InMemoryCatalogRepository(CatalogRepository):
    """
    In-memory catalog with optional JSON-file persistence.

    A re-entrant lock guards the whole store; every public method takes it,
    so single calls are safe from any thread, and `transaction()` extends
    the same lock over a multi-step mutation. The file is rewritten when
    the outermost transaction (or standalone write) completes.
    """

    def __init__(self, persist_path: Optional[str] = None):
        """
        Initialise repository.

        Args:
            persist_path: Optional path to persist data to JSON file
        """
        self._lock = threading.RLock()
        self._depth = 0
        self._buildings: dict[str, Building] = {}
        self._units: dict[str, UnitListing] = {}
        self._feeds: dict[str, Feed] = {}
        self._runs: list[IngestionRun] = []
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _save_to_file(self) -> None:
        """Persist data to file."""
        if not self._persist_path:
            return

        data = {
            "feeds": [f.to_dict() for f in self._feeds.values()],
            "buildings": [b.to_dict() for b in self._buildings.values()],
            "units": [u.to_dict() for u in self._units.values()],
            "runs": [r.to_dict() for r in self._runs],
            "saved_at": utcnow().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._persist_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self._persist_path)

    def _load_from_file(self) -> None:
        """
        Load data from file.

        All-or-nothing: the store is only replaced once every record has
        parsed, so a damaged file never yields a partial catalog.
        """
        try:
            data = json.loads(self._persist_path.read_text(encoding="utf-8"))
            feeds = {f.id: f for f in map(Feed.from_dict, data.get("feeds", []))}
            buildings = {b.id: b for b in map(Building.from_dict, data.get("buildings", []))}
            units = {u.id: u for u in map(UnitListing.from_dict, data.get("units", []))}
            runs = [IngestionRun.from_dict(item) for item in data.get("runs", [])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Could not load catalog from %s: %s", self._persist_path, e)
            return

        self._feeds = feeds
        self._buildings = buildings
        self._units = units
        self._runs = runs

    @contextmanager
    def transaction(self) -> Iterator["InMemoryCatalogRepository"]:
        """Hold the store lock for the duration of the block."""
        with self._lock:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            if self._depth == 0:
                self._save_to_file()

    def _committed(self) -> None:
        # Standalone writes persist immediately; nested ones wait for the
        # outermost transaction.
        if self._depth == 0:
            self._save_to_file()

    # =========================================================================
    # Buildings
    # =========================================================================

    def list_buildings(self, source_id: str) -> list[Building]:
        with self._lock:
            return [
                Building.from_dict(b.to_dict())
                for b in self._buildings.values()
                if b.source_id == source_id
            ]

    def get_building(self, record_id: str) -> Optional[Building]:
        with self._lock:
            building = self._buildings.get(record_id)
            return Building.from_dict(building.to_dict()) if building else None

    def insert_building(self, building: Building) -> Building:
        with self._lock:
            if not building.id:
                building.id = new_id()
            if building.id in self._buildings:
                raise ValueError(f"Building {building.id} already exists")
            self._buildings[building.id] = Building.from_dict(building.to_dict())
            self._committed()
            return building

    def merge_building(self, record_id: str, changes: dict[str, Any]) -> Building:
        with self._lock:
            building = self._buildings[record_id]
            _apply(building, changes)
            self._committed()
            return Building.from_dict(building.to_dict())

    # =========================================================================
    # Units
    # =========================================================================

    def list_units(self, source_id: str) -> list[UnitListing]:
        with self._lock:
            return [
                UnitListing.from_dict(u.to_dict())
                for u in self._units.values()
                if u.source_id == source_id
            ]

    def get_unit(self, record_id: str) -> Optional[UnitListing]:
        with self._lock:
            unit = self._units.get(record_id)
            return UnitListing.from_dict(unit.to_dict()) if unit else None

    def insert_unit(self, unit: UnitListing) -> UnitListing:
        with self._lock:
            if not unit.id:
                unit.id = new_id()
            if unit.id in self._units:
                raise ValueError(f"Unit {unit.id} already exists")
            self._units[unit.id] = UnitListing.from_dict(unit.to_dict())
            self._committed()
            return unit

    def merge_unit(self, record_id: str, changes: dict[str, Any]) -> UnitListing:
        with self._lock:
            unit = self._units[record_id]
            _apply(unit, changes)
            self._committed()
            return UnitListing.from_dict(unit.to_dict())

    # =========================================================================
    # Feeds
    # =========================================================================

    def get_feed(self, feed_id: str) -> Optional[Feed]:
        with self._lock:
            feed = self._feeds.get(feed_id)
            return Feed.from_dict(feed.to_dict()) if feed else None

    def list_feeds(self) -> list[Feed]:
        with self._lock:
            return [Feed.from_dict(f.to_dict()) for f in self._feeds.values()]

    def save_feed(self, feed: Feed) -> Feed:
        with self._lock:
            self._feeds[feed.id] = Feed.from_dict(feed.to_dict())
            self._committed()
            return feed

    def delete_feed(self, feed_id: str) -> bool:
        """
        Delete a feed together with the catalog records it owns.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            if feed_id not in self._feeds:
                return False
            del self._feeds[feed_id]
            self._buildings = {
                k: b for k, b in self._buildings.items() if b.source_id != feed_id
            }
            self._units = {
                k: u for k, u in self._units.items() if u.source_id != feed_id
            }
            self._committed()
            return True

    def stamp_feed_refresh(self, feed_id: str, at: datetime) -> None:
        with self._lock:
            feed = self._feeds.get(feed_id)
            if feed is None:
                raise KeyError(feed_id)
            feed.last_auto_refresh = at
            self._committed()

    # =========================================================================
    # Runs
    # =========================================================================

    def append_run(self, run: IngestionRun) -> None:
        with self._lock:
            self._runs.append(run)
            self._committed()

    def list_runs(self, source_id: Optional[str] = None) -> list[IngestionRun]:
        """Runs newest first, optionally restricted to one source."""
        with self._lock:
            runs = [r for r in self._runs if source_id is None or r.source_id == source_id]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)


def _apply(record: Any, changes: dict[str, Any]) -> None:
    for name, value in changes.items():
        if name == "id":
            continue
        if not hasattr(record, name):
            raise AttributeError(f"{type(record).__name__} has no field {name!r}")
        setattr(record, name, value)


# =============================================================================
# Singleton Instance
# =============================================================================

_repository_instance: Optional[CatalogRepository] = None


def get_catalog_repository(persist_path: Optional[str] = None) -> CatalogRepository:
    """
    Get the catalog repository singleton.

    Args:
        persist_path: Optional path for persistence (only used on first call)

    Returns:
        CatalogRepository instance
    """
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = InMemoryCatalogRepository(
            persist_path or "data/catalog.json"
        )
    return _repository_instance


def set_catalog_repository(repository: Optional[CatalogRepository]) -> None:
    """Replace the singleton (used by the app factory and tests)."""
    global _repository_instance
    _repository_instance = repository

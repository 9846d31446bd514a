"""
Upsert Reconciler - Merging a Feed Pass into the Catalog

Buildings and units share one discipline:

1. Index the source's existing records by external id
2. Validate each candidate; failures become RowError diagnostics and the
   batch continues
3. Update matching records in place, insert the rest with a fresh id
4. Track every external id seen in the pass
5. Sweep once: every active record of the source that was not seen
   becomes hidden

Both entry points must run inside one catalog transaction, and buildings
must be reconciled before units so unit rows can link to them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from core.catalog.repository import CatalogRepository
from core.catalog.schema import (
    Building,
    DealType,
    RecordStatus,
    RowError,
    UnitListing,
    UpsertResult,
    slugify,
    utcnow,
)
from core.ingestion.coercion import (
    as_flag,
    as_number,
    as_text,
    as_text_list,
    as_whole,
    normalise_category,
    normalise_deal_type,
    normalise_location_value,
    normalise_status,
)
from core.ingestion.resolver import resolve_field
from core.ingestion.rows import RawRow


logger = logging.getLogger(__name__)

Record = Union[Building, UnitListing]


# =============================================================================
# Shared Discipline
# =============================================================================


class _Reconciliation:
    """Index, counters and seen-set of one reconciliation pass."""

    def __init__(
        self,
        existing: Iterable[Record],
        insert: Callable[[Any], Any],
        merge: Callable[[str, dict[str, Any]], Any],
        now: datetime,
    ):
        self.index: dict[str, Record] = {r.external_id: r for r in existing}
        self.seen: set[str] = set()
        self.result = UpsertResult()
        self._insert = insert
        self._merge = merge
        self._now = now

    def see(self, external_id: str) -> None:
        self.seen.add(external_id)

    def reject(self, row_index: int, message: str, external_id: Optional[str] = None) -> None:
        self.result.errors.append(
            RowError(row_index=row_index, error=message, external_id=external_id or None)
        )

    def apply(self, candidate: Record) -> None:
        """Insert or update one validated candidate."""
        self.see(candidate.external_id)
        candidate.last_seen_at = self._now
        candidate.updated_at = self._now

        existing = self.index.get(candidate.external_id)
        if existing is None:
            inserted = self._insert(candidate)
            self.index[candidate.external_id] = inserted
            self.result.inserted += 1
            return

        changes = candidate.candidate_fields()
        if existing.status is RecordStatus.ARCHIVED:
            # Archiving is an administrative decision a feed cannot undo
            changes.pop("status")
        self.index[candidate.external_id] = self._merge(existing.id, changes)
        self.result.updated += 1

    def sweep(self, records: Iterable[Record]) -> None:
        """Hide every active record not seen in this pass."""
        for record in records:
            if record.external_id in self.seen or record.status is not RecordStatus.ACTIVE:
                continue
            self._merge(record.id, {"status": RecordStatus.HIDDEN, "updated_at": self._now})
            self.result.hidden += 1


# =============================================================================
# Buildings
# =============================================================================


def reconcile_buildings(
    catalog: CatalogRepository,
    source_id: str,
    candidates: list[Building],
    now: Optional[datetime] = None,
) -> UpsertResult:
    """
    Upsert aggregated Building candidates for one source.

    Buildings are aggregates and carry no hard field requirements, so this
    pass never produces row errors.

    Returns:
        UpsertResult with inserted / updated / hidden counts
    """
    now = now or utcnow()
    with catalog.transaction():
        pass_ = _Reconciliation(
            catalog.list_buildings(source_id),
            catalog.insert_building,
            catalog.merge_building,
            now,
        )
        for candidate in candidates:
            candidate.source_id = source_id
            pass_.apply(candidate)
        pass_.sweep(catalog.list_buildings(source_id))

    result = pass_.result
    logger.info(
        "Buildings for %s: +%d / upd %d / hidden %d",
        source_id,
        result.inserted,
        result.updated,
        result.hidden,
    )
    return result


# =============================================================================
# Units
# =============================================================================


def build_unit(
    row: RawRow,
    source_id: str,
    external_id: str,
    mapping: Optional[Mapping[str, str]] = None,
    buildings: Optional[Mapping[str, Building]] = None,
) -> UnitListing:
    """
    Map a raw row onto a UnitListing candidate.

    Raises:
        ValueError: If bedrooms, price or area do not resolve to numbers
    """

    def get(name: str) -> Any:
        return resolve_field(row, name, mapping)

    bedrooms = as_whole(get("bedrooms"))
    price = as_number(get("price"))
    area = as_number(get("area_total"))
    if bedrooms is None or price is None or area is None:
        raise ValueError(
            f"Invalid required fields - bedrooms: {as_text(get('bedrooms')) or 'missing'}, "
            f"price: {as_text(get('price')) or 'missing'}, "
            f"area: {as_text(get('area_total')) or 'missing'}"
        )

    title = as_text(get("title")).strip() or external_id
    building_external_id = as_text(get("building_external_id")).strip() or None
    building = (buildings or {}).get(building_external_id) if building_external_id else None
    deal_type = normalise_deal_type(get("deal_type"))

    return UnitListing(
        source_id=source_id,
        external_id=external_id,
        title=title,
        slug=slugify(title),
        bedrooms=bedrooms,
        price=price,
        area_total=area,
        deal_type=deal_type,
        category=normalise_category(get("category")),
        old_price=as_number(get("old_price")),
        price_period="month" if deal_type is DealType.RENT else None,
        area_living=as_number(get("area_living")),
        area_kitchen=as_number(get("area_kitchen")),
        floor=as_whole(get("floor")),
        floors_total=as_whole(get("floors_total")),
        district=normalise_location_value(get("district")),
        metro=as_text_list(get("metro")),
        images=as_text_list(get("images")),
        description=as_text(get("description")).strip() or None,
        lot_number=as_text(get("lot_number")).strip(),
        renovation=as_text(get("renovation")).strip() or None,
        is_euroflat=as_flag(get("is_euroflat")),
        building_section=as_text(get("building_section")).strip() or None,
        building_state=as_text(get("building_state")).strip() or None,
        ready_quarter=as_whole(get("ready_quarter")),
        built_year=as_whole(get("built_year")),
        building_id=building.id if building else None,
        building_external_id=building_external_id,
        status=normalise_status(get("status")),
    )


def reconcile_units(
    catalog: CatalogRepository,
    source_id: str,
    rows: list[RawRow],
    mapping: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> UpsertResult:
    """
    Upsert unit rows for one source.

    Rows lacking an external id, or whose bedrooms / price / area do not
    resolve to numbers, are reported as RowError (1-based row index) and
    skipped; valid rows are still applied. A row whose external id resolves
    counts as seen even if it then fails validation, so its existing record
    is not hidden by a temporarily malformed feed entry.

    Returns:
        UpsertResult with counts and per-row errors
    """
    now = now or utcnow()
    with catalog.transaction():
        buildings = {b.external_id: b for b in catalog.list_buildings(source_id)}
        pass_ = _Reconciliation(
            catalog.list_units(source_id),
            catalog.insert_unit,
            catalog.merge_unit,
            now,
        )

        for row_index, row in enumerate(rows, start=1):
            external_id = as_text(resolve_field(row, "external_id", mapping)).strip()
            if not external_id:
                pass_.reject(row_index, "Missing external_id")
                continue
            pass_.see(external_id)

            try:
                candidate = build_unit(row, source_id, external_id, mapping, buildings)
            except ValueError as e:
                pass_.reject(row_index, str(e), external_id)
                logger.warning("Rejected row %d (%s) from %s: %s", row_index, external_id, source_id, e)
                continue
            pass_.apply(candidate)

        pass_.sweep(catalog.list_units(source_id))

    result = pass_.result
    logger.info(
        "Units for %s: +%d / upd %d / hidden %d / errors %d",
        source_id,
        result.inserted,
        result.updated,
        result.hidden,
        len(result.errors),
    )
    return result

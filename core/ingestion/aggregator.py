"""
Complex Aggregator - Building Records Folded Out of Unit Rows

Groups raw rows by their building reference and folds each group into one
Building candidate. Everything is recomputed from scratch on every pass, so
a building's price_from / area_from can never keep a stale minimum after
its cheapest unit disappears from the feed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from core.catalog.schema import Building, Category, slugify
from core.ingestion.coercion import (
    as_number,
    as_text,
    as_text_list,
    normalise_location_value,
)
from core.ingestion.resolver import resolve_field
from core.ingestion.rows import RawRow


logger = logging.getLogger(__name__)


@dataclass
class _BuildingFold:
    """Running state for one building key."""

    key: str
    min_price: Optional[float] = None
    min_area: Optional[float] = None
    explicit_title: str = ""
    own_title: str = ""
    images: dict[str, None] = field(default_factory=dict)
    metro: dict[str, None] = field(default_factory=dict)
    developer: str = ""
    district: str = ""
    handover_date: str = ""
    building_class: str = ""
    finish_type: str = ""
    description: str = ""

    def fold_minimum(self, price: Optional[float], area: Optional[float]) -> None:
        if price is not None and price > 0:
            self.min_price = price if self.min_price is None else min(self.min_price, price)
        if area is not None and area > 0:
            self.min_area = area if self.min_area is None else min(self.min_area, area)

    def keep_first(self, name: str, value: str) -> None:
        if value and not getattr(self, name):
            setattr(self, name, value)

    @property
    def title(self) -> str:
        return self.explicit_title or self.own_title or self.key


def _first_number(row: RawRow, mapping, *fields: str) -> Optional[float]:
    for name in fields:
        number = as_number(resolve_field(row, name, mapping))
        if number is not None:
            return number
    return None


def building_key(row: RawRow, mapping: Optional[Mapping[str, str]] = None) -> tuple[str, bool]:
    """
    Building key of a row and whether the row is a child unit.

    A row without a building reference describes a building itself and is
    keyed by its own external id.
    """
    reference = as_text(resolve_field(row, "building_external_id", mapping)).strip()
    if reference:
        return reference, True
    return as_text(resolve_field(row, "external_id", mapping)).strip(), False


def aggregate_buildings(
    rows: list[RawRow],
    source_id: str,
    mapping: Optional[Mapping[str, str]] = None,
) -> list[Building]:
    """
    Fold raw rows into Building candidates, one per building key.

    Per key:
    - price_from / area_from: minimum over all rows, absent values ignored
    - title: explicit building title, else the own title of a row that is
      not a child unit, else the key itself
    - images / metro: union, first-seen order
    - developer, district, handover date, class, finish type, description:
      first non-empty value wins

    Rows without any resolvable key cannot be grouped and are skipped.

    Args:
        rows: Raw rows of one feed pass
        source_id: Feed the buildings belong to
        mapping: Optional per-feed column mapping

    Returns:
        Building candidates in first-seen key order (no internal ids)
    """
    folds: dict[str, _BuildingFold] = {}
    skipped = 0

    for row in rows:
        key, is_child = building_key(row, mapping)
        if not key:
            skipped += 1
            continue

        fold = folds.get(key)
        if fold is None:
            fold = folds[key] = _BuildingFold(key=key)

        fold.fold_minimum(
            _first_number(row, mapping, "price_from", "price"),
            _first_number(row, mapping, "area_from", "area_total"),
        )

        fold.keep_first(
            "explicit_title",
            as_text(resolve_field(row, "building_title", mapping)).strip(),
        )
        if not is_child:
            fold.keep_first("own_title", as_text(resolve_field(row, "title", mapping)).strip())

        for image in as_text_list(resolve_field(row, "images", mapping)):
            fold.images.setdefault(image, None)
        for station in as_text_list(resolve_field(row, "metro", mapping)):
            fold.metro.setdefault(station, None)

        fold.keep_first("developer", as_text(resolve_field(row, "developer", mapping)).strip())
        fold.keep_first(
            "district", normalise_location_value(resolve_field(row, "district", mapping))
        )
        fold.keep_first(
            "handover_date", as_text(resolve_field(row, "handover_date", mapping)).strip()
        )
        fold.keep_first(
            "building_class", as_text(resolve_field(row, "building_class", mapping)).strip()
        )
        fold.keep_first(
            "finish_type", as_text(resolve_field(row, "finish_type", mapping)).strip()
        )
        fold.keep_first(
            "description", as_text(resolve_field(row, "description", mapping)).strip()
        )

    if skipped:
        logger.debug(
            "Skipped %d rows without a building key for source %s", skipped, source_id
        )

    return [
        Building(
            source_id=source_id,
            external_id=fold.key,
            title=fold.title,
            slug=slugify(fold.title),
            category=Category.NEWBUILD,
            district=fold.district,
            metro=list(fold.metro),
            price_from=fold.min_price,
            area_from=fold.min_area,
            images=list(fold.images),
            developer=fold.developer or None,
            building_class=fold.building_class or None,
            finish_type=fold.finish_type or None,
            handover_date=fold.handover_date or None,
            description=fold.description or None,
        )
        for fold in folds.values()
    ]

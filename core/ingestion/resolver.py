"""
Field Resolver - Logical Field Names to Raw Row Values

Administrators can pin any logical field to a specific source column per
feed; without a mapping, well-known column names and their aliases are
detected automatically.
"""

from __future__ import annotations

from typing import Final, Iterable, Mapping, Optional

from core.ingestion.rows import RawRow, RowValue


# Default alias chains, tried in order after the logical name itself
FIELD_ALIASES: Final[dict[str, tuple[str, ...]]] = {
    "external_id": ("id", "externalId"),
    "title": ("name",),
    "building_external_id": (
        "complex_external_id",
        "complexExternalId",
        "complex_id",
        "building-name",
        "yandex-building-id",
    ),
    "building_title": (
        "complex_title",
        "building-name",
        "complex_name",
        "zhk_name",
        "complexName",
    ),
    "category": (),
    "deal_type": ("dealType",),
    "bedrooms": ("rooms",),
    "price": (),
    "price_from": ("priceFrom", "price_min"),
    "old_price": ("oldPrice", "oldprice"),
    "area_total": ("area",),
    "area_from": ("areaFrom", "area_min"),
    "area_living": ("areaLiving", "living_space"),
    "area_kitchen": ("areaKitchen", "kitchen_space"),
    "floor": (),
    "floors_total": ("floorsTotal", "floors-total"),
    "district": ("region",),
    "metro": (),
    "images": ("image_urls", "photos"),
    "description": (),
    "developer": (),
    "handover_date": ("handoverDate",),
    "building_class": ("class", "class_type", "housing_class"),
    "finish_type": ("finishType", "finishing"),
    "lot_number": ("lotNumber", "apartment"),
    "renovation": (),
    "is_euroflat": ("euroflat",),
    "building_section": ("buildingSection", "building-section"),
    "building_state": ("buildingState", "building-state"),
    "ready_quarter": ("readyQuarter", "ready-quarter"),
    "built_year": ("builtYear", "built-year"),
    "status": (),
}


def resolve_field(
    row: RawRow,
    field: str,
    mapping: Optional[Mapping[str, str]] = None,
    aliases: Optional[Iterable[str]] = None,
) -> Optional[RowValue]:
    """
    Resolve a logical field to a raw value.

    Order: the column named by `mapping[field]` (unconditionally, even if
    the row lacks it), then `field` itself, then each alias. Aliases default
    to FIELD_ALIASES for the field.

    Returns:
        The raw value, or None if nothing matched
    """
    if mapping and mapping.get(field):
        return row.get(mapping[field])
    if field in row:
        return row[field]
    if aliases is None:
        aliases = FIELD_ALIASES.get(field, ())
    for alias in aliases:
        if alias in row:
            return row[alias]
    return None


def matched_column(
    row: RawRow,
    field: str,
    mapping: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Name of the source column resolve_field would read, if present."""
    if mapping and mapping.get(field):
        column = mapping[field]
        return column if column in row else None
    for column in (field, *FIELD_ALIASES.get(field, ())):
        if column in row:
            return column
    return None

"""
Tagged-Markup Normalizer - Flattening of Nested Realty XML Offers

Realty XML feeds nest prices, areas, location and images inside child
elements and attributes. This module flattens one parsed <offer> node into
the same flat row shape the delimited, spreadsheet and JSON parsers produce,
so the rest of the pipeline never needs to know a feed was XML.

Parsed node conventions (see parsers.element_to_value):
    - attributes are keys prefixed with "@_"
    - element text next to attributes is stored under "#text"
    - repeated child elements become lists
"""

from __future__ import annotations

from typing import Any, Final, Optional

from core.ingestion.coercion import (
    as_flag,
    as_number,
    as_text,
    as_whole,
    normalise_location_value,
)
from core.ingestion.rows import RawRow


ATTRIBUTE_PREFIX: Final = "@_"
TEXT_KEY: Final = "#text"

# Deal type vocabulary used by realty feeds ("аренда" = rent)
RENT_DEAL_TYPES: Final[frozenset[str]] = frozenset({"аренда", "rent"})

# Marker in <deal-status> meaning primary market ("первичная продажа")
PRIMARY_MARKET_MARKER: Final = "первичн"

# URL path segments vendors use for floor-plan renders
PLAN_URL_SEGMENTS: Final[tuple[str, ...]] = ("/preset/", "/layout/")
PLAN_TAG: Final = "plan"

# Location keys tried in order when picking the district text
LOCATION_TEXT_KEYS: Final[tuple[tuple[str, ...], ...]] = (
    ("address",),
    ("sub-locality-name", "sub_locality_name"),
    ("locality-name", "locality_name"),
    ("region",),
)


# =============================================================================
# Node Helpers
# =============================================================================


def _first(node: dict[str, Any], *keys: str) -> Any:
    """First truthy value among `keys`, mirroring `a || b || c` fallbacks."""
    for key in keys:
        value = node.get(key)
        if value:
            return value
    return None


def unwrap_value(value: Any) -> Optional[float]:
    """Number from a `<price><value>..</value></price>` style node or a scalar."""
    if isinstance(value, dict):
        if "value" in value:
            return as_number(value["value"])
        return as_number(value.get(TEXT_KEY))
    return as_number(value)


def pick_location_text(location: dict[str, Any]) -> str:
    """Address, else sub-locality, else locality, else region."""
    for keys in LOCATION_TEXT_KEYS:
        for key in keys:
            text = normalise_location_value(location.get(key))
            if text:
                return text
    return ""


def extract_metro(location: dict[str, Any]) -> list[str]:
    """Metro station names from one or many <metro> nodes."""
    metro = location.get("metro")
    nodes = metro if isinstance(metro, list) else [metro]
    names = []
    for node in nodes:
        if isinstance(node, dict):
            name = as_text(node.get("name")).strip()
        else:
            name = as_text(node).strip()
        if name:
            names.append(name)
    return names


def _image_parts(node: Any) -> tuple[str, str]:
    if isinstance(node, dict):
        url = as_text(_first(node, TEXT_KEY, "url"))
        tag = as_text(node.get(ATTRIBUTE_PREFIX + "tag"))
        return url.strip(), tag.strip()
    return as_text(node).strip(), ""


def is_plan_image(url: str, tag: str = "") -> bool:
    """True when an image is a floor plan rather than a presentable photo."""
    return tag == PLAN_TAG or any(segment in url for segment in PLAN_URL_SEGMENTS)


def order_images(images: Any) -> list[str]:
    """
    Image URLs with all photos first, then all floor plans.

    Cover selection downstream always takes index 0, so a plan must never
    precede a photo.
    """
    nodes = images if isinstance(images, list) else [images]
    photos: list[str] = []
    plans: list[str] = []
    for node in nodes:
        url, tag = _image_parts(node)
        if not url:
            continue
        if is_plan_image(url, tag):
            plans.append(url)
        else:
            photos.append(url)
    return photos + plans


def infer_category(deal_type: str, new_flat: str, deal_status: str) -> str:
    """rent for rentals, newbuild for primary market, otherwise secondary."""
    if deal_type == "rent":
        return "rent"
    if new_flat == "1" or PRIMARY_MARKET_MARKER in deal_status.lower():
        return "newbuild"
    return "secondary"


def room_title(rooms: Optional[float], building_name: str) -> str:
    """Synthesised unit title, e.g. '2-room in Riverside Park'."""
    descriptor = f"{as_text(rooms)}-room" if rooms else "apartment"
    return f"{descriptor} in {building_name}" if building_name else descriptor


# =============================================================================
# Normalizer
# =============================================================================


def normalise_markup_row(node: dict[str, Any]) -> RawRow:
    """
    Flatten one realty <offer> node into a flat raw row.

    Args:
        node: Parsed offer element

    Returns:
        Flat row using the engine's logical field names
    """
    row: RawRow = {}

    row["external_id"] = as_text(
        _first(node, ATTRIBUTE_PREFIX + "internal-id", "internal_id", "id")
    )

    deal_type = "rent" if as_text(node.get("type")).strip().lower() in RENT_DEAL_TYPES else "sale"
    row["deal_type"] = deal_type

    rooms = as_whole(node.get("rooms"))
    row["bedrooms"] = rooms

    # Nested numeric objects
    row["price"] = unwrap_value(node.get("price"))
    if node.get("oldprice"):
        row["old_price"] = unwrap_value(node["oldprice"])
    row["area_total"] = unwrap_value(node.get("area"))
    if node.get("living-space") or node.get("living_space"):
        row["area_living"] = unwrap_value(_first(node, "living-space", "living_space"))
    if node.get("kitchen-space") or node.get("kitchen_space"):
        row["area_kitchen"] = unwrap_value(_first(node, "kitchen-space", "kitchen_space"))

    # Location
    location = node.get("location")
    if isinstance(location, dict):
        row["district"] = pick_location_text(location)
        row["metro"] = ",".join(extract_metro(location))
    else:
        row["district"] = ""
        row["metro"] = ""

    # Building reference
    building_name = as_text(_first(node, "building-name", "building_name")).strip()
    if building_name:
        row["building_external_id"] = building_name
        row["building_title"] = building_name

    sales_agent = node.get("sales-agent")
    if isinstance(sales_agent, dict) and as_text(sales_agent.get("category")) == "developer":
        row["developer"] = as_text(sales_agent.get("organization"))

    built_year = as_whole(_first(node, "built-year", "built_year"))
    ready_quarter = as_whole(_first(node, "ready-quarter", "ready_quarter"))
    if built_year:
        row["handover_date"] = (
            f"Q{as_text(ready_quarter)} {as_text(built_year)}"
            if ready_quarter
            else as_text(built_year)
        )

    row["images"] = ",".join(order_images(node.get("image")))

    row["category"] = infer_category(
        deal_type,
        as_text(_first(node, "new-flat", "new_flat")).strip(),
        as_text(_first(node, "deal-status", "deal_status")),
    )

    row["title"] = room_title(rooms, building_name)
    row["description"] = as_text(node.get("description"))

    # Unit details
    row["floor"] = as_whole(node.get("floor"))
    row["floors_total"] = as_whole(_first(node, "floors-total", "floors_total"))
    row["renovation"] = as_text(node.get("renovation"))
    row["is_euroflat"] = as_flag(node.get("euroflat")) or as_flag(node.get("is_euroflat"))
    row["building_section"] = as_text(_first(node, "building-section", "building_section"))
    row["building_state"] = as_text(_first(node, "building-state", "building_state"))
    row["ready_quarter"] = ready_quarter
    row["built_year"] = built_year
    row["lot_number"] = as_text(_first(node, "apartment", "lot_number"))

    return row

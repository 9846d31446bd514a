"""
Import preview: dry-run validation and mapping report.

Lets an administrator check a payload and a column mapping before running
a real import. Nothing here touches the catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final, Mapping, Optional

from core.catalog.schema import EntityKind
from core.ingestion.aggregator import aggregate_buildings, building_key
from core.ingestion.coercion import as_text, as_text_list, normalise_location_value
from core.ingestion.reconciler import build_unit
from core.ingestion.resolver import FIELD_ALIASES, matched_column, resolve_field
from core.ingestion.rows import RawRow


DEFAULT_PREVIEW_LIMIT: Final = 100

# Fields whose absence is worth a warning but never rejects a row
ADVISORY_FIELDS: Final[tuple[str, ...]] = ("district", "category", "deal_type", "title", "images")


@dataclass
class PreviewRow:
    """One sample row with its diagnostics."""

    row_index: int
    data: RawRow
    mapped_fields: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rowIndex": self.row_index,
            "data": self.data,
            "mappedFields": self.mapped_fields,
            "errors": self.errors,
            "warnings": self.warnings,
        }


@dataclass
class PreviewResult:
    """Outcome of a dry run over a batch of rows."""

    total_rows: int = 0
    sample_rows: list[PreviewRow] = field(default_factory=list)
    mapped_items: list[dict[str, Any]] = field(default_factory=list)
    field_mappings: dict[str, str] = field(default_factory=dict)
    valid_rows: int = 0
    invalid_rows: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "sampleRows": [r.to_dict() for r in self.sample_rows],
            "mappedItems": self.mapped_items,
            "fieldMappings": self.field_mappings,
            "validRows": self.valid_rows,
            "invalidRows": self.invalid_rows,
        }


def _mapped_fields(row: RawRow, mapping: Optional[Mapping[str, str]]) -> dict[str, str]:
    found = {}
    for name in FIELD_ALIASES:
        column = matched_column(row, name, mapping)
        if column is not None:
            found[name] = column
    return found


def _has(row: RawRow, name: str, mapping: Optional[Mapping[str, str]]) -> bool:
    value = resolve_field(row, name, mapping)
    if name == "images":
        return bool(as_text_list(value))
    if name == "district":
        return bool(normalise_location_value(value))
    return bool(as_text(value).strip())


def _check_unit(
    row: RawRow, mapping: Optional[Mapping[str, str]], item: PreviewRow
) -> Optional[dict[str, Any]]:
    external_id = as_text(resolve_field(row, "external_id", mapping)).strip()
    if not external_id:
        item.errors.append("Missing external_id")
        return None
    try:
        unit = build_unit(row, "preview", external_id, mapping)
    except ValueError as e:
        item.errors.append(str(e))
        return None
    return unit.to_dict()


def preview_rows(
    rows: list[RawRow],
    entity: EntityKind,
    mapping: Optional[Mapping[str, str]] = None,
    limit: int = DEFAULT_PREVIEW_LIMIT,
) -> PreviewResult:
    """
    Validate and map a batch without writing anything.

    Units are mapped row by row with the same rules the reconciler applies;
    buildings are mapped through the aggregator, so the items shown are the
    building records a real import would produce.

    Args:
        rows: Parsed raw rows
        entity: Target entity kind
        mapping: Optional column mapping to try out
        limit: Maximum number of sample rows and mapped items

    Returns:
        PreviewResult; valid / invalid counts cover every row, samples only
        the first `limit`
    """
    result = PreviewResult(total_rows=len(rows))

    for row_index, row in enumerate(rows, start=1):
        item = PreviewRow(row_index=row_index, data=row, mapped_fields=_mapped_fields(row, mapping))

        for name, column in item.mapped_fields.items():
            result.field_mappings.setdefault(name, column)

        if entity is EntityKind.BUILDING:
            if not building_key(row, mapping)[0]:
                item.errors.append("Missing building reference and external_id")
        else:
            mapped = _check_unit(row, mapping, item)
            if mapped is not None and len(result.mapped_items) < limit:
                result.mapped_items.append(mapped)

        for name in ADVISORY_FIELDS:
            if not _has(row, name, mapping):
                item.warnings.append(f"Missing {name}")

        if item.errors:
            result.invalid_rows += 1
        else:
            result.valid_rows += 1
        if len(result.sample_rows) < limit:
            result.sample_rows.append(item)

    if entity is EntityKind.BUILDING:
        result.mapped_items = [
            b.to_dict() for b in aggregate_buildings(rows, "preview", mapping)[:limit]
        ]

    return result

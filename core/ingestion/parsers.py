"""
Format Parsers - Byte Buffers to Raw Rows

Four independent adapters turn a raw payload into an ordered list of raw
rows: delimited text, spreadsheet, structured object (JSON) and tagged
markup (XML). A malformed buffer raises FeedParseError, which aborts the
ingestion run before any row is reconciled.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import struct
import xml.etree.ElementTree as ET
import zipfile
from pathlib import PurePosixPath
from typing import Any, Callable, Final, Iterable, Optional, Sequence
from urllib.parse import urlparse

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
import xlrd
from xlrd.compdoc import CompDocError

from core.catalog.schema import FeedFormat
from core.ingestion.coercion import as_text
from core.ingestion.errors import FeedParseError
from core.ingestion.markup import ATTRIBUTE_PREFIX, TEXT_KEY, normalise_markup_row
from core.ingestion.rows import RawRow, as_rows, find_first_list


logger = logging.getLogger(__name__)


# =============================================================================
# Format Detection
# =============================================================================

EXTENSION_FORMATS: Final[dict[str, FeedFormat]] = {
    ".csv": FeedFormat.CSV,
    ".xlsx": FeedFormat.XLSX,
    ".xls": FeedFormat.XLSX,
    ".xml": FeedFormat.XML,
    ".json": FeedFormat.JSON,
}


def guess_format(hint: Optional[str], default: Optional[FeedFormat] = None) -> FeedFormat:
    """
    Detect a payload format from a filename or URL.

    Only the path's extension is considered, so query strings such as
    `feed.xml?token=..` still resolve. Unknown extensions fall back to
    `default`, then to JSON.
    """
    if hint:
        path = urlparse(hint).path if "://" in hint else hint
        suffix = PurePosixPath(path.lower()).suffix
        if suffix in EXTENSION_FORMATS:
            return EXTENSION_FORMATS[suffix]
    return default or FeedFormat.JSON


# =============================================================================
# Delimited Text
# =============================================================================


def _decode(content: bytes, fmt: FeedFormat) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise FeedParseError(fmt.value, f"payload is not valid UTF-8 ({e.reason})") from e


def parse_delimited(content: bytes) -> list[RawRow]:
    """
    Parse CSV: first row is the header, one row per following record.

    Values stay text; completely blank lines are skipped.
    """
    text = _decode(content, FeedFormat.CSV)
    reader = csv.DictReader(io.StringIO(text, newline=""))
    rows = []
    try:
        for record in reader:
            # Extra cells beyond the header land under the None key
            record.pop(None, None)
            if not any((value or "").strip() for value in record.values()):
                continue
            rows.append({key: value if value is not None else "" for key, value in record.items()})
    except csv.Error as e:
        raise FeedParseError(FeedFormat.CSV.value, str(e)) from e
    return rows


# =============================================================================
# Spreadsheet
# =============================================================================


# Legacy BIFF (.xls) workbooks are OLE2 compound documents
OLE2_MAGIC: Final[bytes] = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return value
    # Dates and times keep their textual form
    return str(value)


def _sheet_rows(records: Iterable[Sequence[Any]]) -> list[RawRow]:
    """Header row plus records into raw rows, skipping fully blank records."""
    records = iter(records)
    header = next(records, None)
    if header is None:
        return []
    columns = [as_text(cell).strip() if cell is not None else "" for cell in header]

    rows = []
    for record in records:
        if all(cell is None or cell == "" for cell in record):
            continue
        row = {}
        for index, column in enumerate(columns):
            if not column:
                continue
            cell = record[index] if index < len(record) else None
            row[column] = _cell_value(cell)
        rows.append(row)
    return rows


def _parse_xlsx(content: bytes) -> list[RawRow]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise FeedParseError(FeedFormat.XLSX.value, str(e) or type(e).__name__) from e

    try:
        return _sheet_rows(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()


def _xls_cell(cell: xlrd.sheet.Cell, datemode: int) -> Any:
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate_as_datetime(cell.value, datemode).isoformat()
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    return cell.value


def _parse_xls(content: bytes) -> list[RawRow]:
    try:
        workbook = xlrd.open_workbook(file_contents=content, on_demand=True)
    except (
        xlrd.XLRDError, CompDocError, struct.error, AssertionError, IndexError, ValueError
    ) as e:
        raise FeedParseError("xls", str(e) or type(e).__name__) from e

    try:
        sheet = workbook.sheet_by_index(0)
        return _sheet_rows(
            [_xls_cell(cell, workbook.datemode) for cell in sheet.row(index)]
            for index in range(sheet.nrows)
        )
    finally:
        workbook.release_resources()


def parse_spreadsheet(content: bytes) -> list[RawRow]:
    """
    Parse the first sheet of an XLSX or legacy XLS workbook.

    The workbook flavour is sniffed from the content, not the extension,
    since partners routinely upload `.xls` files under either name. The
    first row is the header; empty cells become empty text rather than
    missing values.
    """
    if content.startswith(OLE2_MAGIC):
        return _parse_xls(content)
    return _parse_xlsx(content)


# =============================================================================
# Structured Object
# =============================================================================


def parse_structured(content: bytes) -> list[RawRow]:
    """
    Parse JSON: a root list is used as-is, otherwise the first list found
    anywhere in the document is taken as the row array.
    """
    text = _decode(content, FeedFormat.JSON)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise FeedParseError(FeedFormat.JSON.value, str(e)) from e

    found = find_first_list(document)
    if found is None:
        logger.warning("No row array found in JSON feed")
        return []
    return as_rows(found)


# =============================================================================
# Tagged Markup
# =============================================================================

# Elements always materialised as lists so single-offer feeds are still found
# by the first-list search
FORCE_LIST_TAGS: Final[frozenset[str]] = frozenset({"offer"})


def _local_name(name: str) -> str:
    """Strip an ElementTree `{namespace}` prefix."""
    return name.rsplit("}", 1)[-1]


def element_to_value(element: ET.Element) -> Any:
    """
    Convert an element into plain dicts, lists and strings.

    Attributes become "@_name" keys, repeated children become lists, and
    text next to attributes or children is kept under "#text". A leaf
    element without attributes is just its text.
    """
    node: dict[str, Any] = {}
    for name, value in element.attrib.items():
        node[ATTRIBUTE_PREFIX + _local_name(name)] = value

    repeated: set[str] = set()
    for child in element:
        key = _local_name(child.tag)
        value = element_to_value(child)
        if key in repeated:
            node[key].append(value)
        elif key in node:
            node[key] = [node[key], value]
            repeated.add(key)
        elif key in FORCE_LIST_TAGS:
            node[key] = [value]
            repeated.add(key)
        else:
            node[key] = value

    text = (element.text or "").strip()
    if not node:
        return text
    if text:
        node[TEXT_KEY] = text
    return node


def parse_markup(content: bytes) -> list[RawRow]:
    """
    Parse realty XML and flatten every offer into a raw row.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise FeedParseError(FeedFormat.XML.value, str(e)) from e

    document = {_local_name(root.tag): element_to_value(root)}
    found = find_first_list(document)
    if found is None:
        logger.warning("No repeated offer element found in XML feed")
        return []
    return [normalise_markup_row(node) for node in as_rows(found)]


# =============================================================================
# Dispatch
# =============================================================================

PARSERS: Final[dict[FeedFormat, Callable[[bytes], list[RawRow]]]] = {
    FeedFormat.CSV: parse_delimited,
    FeedFormat.XLSX: parse_spreadsheet,
    FeedFormat.JSON: parse_structured,
    FeedFormat.XML: parse_markup,
}


def parse_rows(content: bytes, fmt: FeedFormat) -> list[RawRow]:
    """
    Parse a payload into raw rows.

    Raises:
        FeedParseError: If the buffer is malformed for `fmt`
    """
    rows = PARSERS[fmt](content)
    logger.debug("Parsed %d rows from %s payload", len(rows), fmt.value)
    return rows

"""
Formatting utilities.
"""

from typing import Iterable, Optional


def format_row_error(row_index: int, error: str, external_id: Optional[str] = None) -> str:
    """
    Format one row diagnostic as a log line.

    Args:
        row_index: 1-based row position in the batch.
        error: Validation message.
        external_id: External id of the row, if it resolved.

    Returns:
        Line such as "Row 2 (p2): Missing price".
    """
    return f"Row {row_index} ({external_id or '-'}): {error}"


def format_error_log(errors: Iterable, limit: int = 50) -> Optional[str]:
    """
    Render row errors as a run error log.

    The first line states the total; at most `limit` rows follow, and a
    trailing line notes how many were left out.

    Args:
        errors: RowError-like objects with row_index, error, external_id.
        limit: Maximum number of row lines.

    Returns:
        The log text, or None when there are no errors.
    """
    errors = list(errors)
    if not errors:
        return None

    lines = [f"{len(errors)} row(s) rejected"]
    for e in errors[:limit]:
        lines.append(format_row_error(e.row_index, e.error, e.external_id))
    if len(errors) > limit:
        lines.append(f"... and {len(errors) - limit} more")
    return "\n".join(lines)


def format_stats(inserted: int, updated: int, hidden: int) -> str:
    """
    Compact one-line summary of reconciliation counters.

    Returns:
        String such as "+3 / upd 1 / hidden 0".
    """
    return f"+{inserted} / upd {updated} / hidden {hidden}"

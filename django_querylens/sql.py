"""Small SQL text helpers shared by the analyzers and the collector."""

import re
from typing import Optional

_OPERATION_RE = re.compile(
    r"^(SELECT|INSERT|UPDATE|DELETE|BEGIN|COMMIT|ROLLBACK|SAVEPOINT)", re.IGNORECASE
)


def as_text(sql: Optional[object]) -> str:
    """Coerce whatever the caller passed as SQL into a string."""
    if sql is None:
        return ""
    if isinstance(sql, str):
        return sql
    return str(sql)


def truncate_sql(sql: Optional[str], max_length: int) -> str:
    """Truncate SQL query to max length.

    Args:
        sql: SQL query string
        max_length: Number of characters kept before the ellipsis

    Returns:
        The first max_length characters followed by "..." if the query
        was longer, otherwise the query unchanged
    """
    text = as_text(sql)
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def extract_operation(sql: Optional[str]) -> str:
    """Return the leading statement keyword (SELECT, INSERT, ...) or OTHER."""
    match = _OPERATION_RE.match(as_text(sql).strip())
    if match:
        return match.group(1).upper()
    return "OTHER"

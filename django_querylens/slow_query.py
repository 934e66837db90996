"""Slow query analysis.

Pattern-matches the raw SQL of slow queries to produce optimization hints
and keeps an in-memory history of what was flagged. The checks are
regex heuristics, not a SQL parser: a string literal containing "JOIN"
counts as a JOIN.
"""

import logging
import re
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from .sql import as_text, truncate_sql

logger = logging.getLogger(__name__)

MAX_SQL_LENGTH = 500

_SELECT_STAR_RE = re.compile(r"SELECT\s+\*", re.IGNORECASE)
_LIMIT_RE = re.compile(r"LIMIT\s+(\d+)", re.IGNORECASE)
_JOIN_RE = re.compile(r"JOIN", re.IGNORECASE)
_SELECT_RE = re.compile(r"SELECT", re.IGNORECASE)
_LEADING_WILDCARD_RE = re.compile(r"LIKE\s+['\"]%", re.IGNORECASE)
_WHERE_OR_RE = re.compile(r"WHERE.*\bOR\b", re.IGNORECASE)


@dataclass
class SlowQueryFinding:
    """A slow query and the suggestions generated for it.

    Attributes:
        sql: Query text, truncated to 500 characters
        duration_ms: Measured execution time in milliseconds
        operation_name: Framework label for the query, if any
        detected_at: When the query was analyzed (UTC)
        suggestions: Remediation hints, in rule order
    """

    sql: str
    duration_ms: float
    operation_name: Optional[str] = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["detected_at"] = self.detected_at.isoformat()
        return data


def generate_suggestions(sql: Optional[str]) -> List[str]:
    """Run every heuristic against the SQL text.

    Args:
        sql: Full, untruncated SQL text

    Returns:
        One suggestion per matching rule, in rule order (may be empty)
    """
    text = as_text(sql)
    suggestions = []

    # Missing index indicators
    if "WHERE" in text and "INDEX" not in text:
        suggestions.append("Consider adding an index for the WHERE clause columns")

    if _SELECT_STAR_RE.search(text):
        suggestions.append("Avoid SELECT * - specify only needed columns")

    limit = _LIMIT_RE.search(text)
    if limit and int(limit.group(1)) > 1000:
        suggestions.append("Large LIMIT detected - consider pagination")

    if "ORDER BY" in text and "LIMIT" not in text:
        suggestions.append("ORDER BY without LIMIT may be slow on large tables")

    join_count = len(_JOIN_RE.findall(text))
    if join_count > 3:
        suggestions.append(f"{join_count} JOINs detected - consider query optimization")

    if len(_SELECT_RE.findall(text)) > 1:
        suggestions.append("Subquery detected - consider using JOINs or CTEs")

    if _LEADING_WILDCARD_RE.search(text):
        suggestions.append("Leading wildcard in LIKE prevents index usage")

    if _WHERE_OR_RE.search(text):
        suggestions.append("OR in WHERE clause may prevent index usage - consider UNION")

    return suggestions


class SlowQueryAnalyzer:
    """Analyzes slow queries and remembers the most recent ones.

    The analyzer does not decide what "slow" means; callers compare the
    duration against their own threshold before calling ``analyze``.

    Args:
        max_history: Keep at most this many findings (None keeps all)
    """

    def __init__(self, max_history: Optional[int] = None):
        self._history: Deque[SlowQueryFinding] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def analyze(
        self, sql: Optional[str], duration_ms: float, operation_name: Optional[str] = None
    ) -> SlowQueryFinding:
        finding = SlowQueryFinding(
            sql=truncate_sql(sql, MAX_SQL_LENGTH),
            duration_ms=duration_ms,
            operation_name=operation_name,
            suggestions=generate_suggestions(sql),
        )

        logger.warning(
            f"Slow query detected ({duration_ms}ms): {finding.sql}",
            extra={
                "sql": finding.sql,
                "duration_ms": duration_ms,
                "operation_name": operation_name,
                "suggestions": finding.suggestions,
            },
        )

        with self._lock:
            self._history.append(finding)

        return finding

    def recent(self, limit: int = 10) -> List[SlowQueryFinding]:
        """Return the last ``limit`` findings, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._history)[-limit:]

    def reset(self) -> None:
        with self._lock:
            self._history.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

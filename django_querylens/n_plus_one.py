"""N+1 query pattern detection.

Detects repeated queries with different parameter values within one
logical request, which indicates an N+1 query problem (fetching in a loop
instead of using select_related/prefetch_related).
"""

import inspect
import os
import re
import sysconfig
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .sql import as_text, truncate_sql

DEFAULT_THRESHOLD = 3

_NUMBERS_RE = re.compile(r"\d+")
_SINGLE_QUOTED_RE = re.compile(r"'[^']*'")
_DOUBLE_QUOTED_RE = re.compile(r'"[^"]*"')
_WHITESPACE_RE = re.compile(r"\s+")
_FROM_TABLE_RE = re.compile(r"FROM\s+[\"`']?(\w+)[\"`']?", re.IGNORECASE)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


@dataclass
class RepetitionEntry:
    """Occurrences of one normalized query within the current request."""

    normalized_query: str
    count: int
    first_seen: datetime
    sample_sql: str


@dataclass
class NPlusOneFinding:
    """Represents a detected N+1 query pattern.

    Attributes:
        query: Original SQL of the query that crossed the threshold (truncated)
        normalized_query: The shape shared by all repeated queries
        count: Number of occurrences when the pattern was flagged
        model: Best guess of the model (or table) being loaded
        location: "path:line" of the application code issuing the query, if found
        detected_at: When the pattern was flagged (UTC)
    """

    query: str
    normalized_query: str
    count: int
    model: str = "Unknown"
    location: Optional[str] = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["detected_at"] = self.detected_at.isoformat()
        return data


def normalize_query(sql: Optional[str]) -> str:
    """Normalize SQL by replacing literals with placeholders.

    Replaces:
    - Numbers: 123 -> ?
    - Strings: 'foo' -> ?
    - Quoted identifiers/strings: "posts" -> ?
    - Whitespace runs -> single space

    Args:
        sql: Raw SQL query string

    Returns:
        Normalized query usable as a grouping key
    """
    result = as_text(sql)
    result = _NUMBERS_RE.sub("?", result)
    result = _SINGLE_QUOTED_RE.sub("?", result)
    result = _DOUBLE_QUOTED_RE.sub("?", result)
    result = _WHITESPACE_RE.sub(" ", result)
    return result.strip()


def guess_model_name(sql: Optional[str]) -> str:
    """Guess which model a query loads from its FROM clause.

    Uses the Django app registry to map the table name to a model class
    name when the registry is ready, falling back to the raw table name.

    Returns:
        Model class name, table name, or "Unknown" if no table was found
    """
    match = _FROM_TABLE_RE.search(as_text(sql))
    if not match:
        return "Unknown"
    table_name = match.group(1)

    try:
        from django.apps import apps

        if apps.ready:
            for model in apps.get_models():
                if model._meta.db_table == table_name:
                    return model.__name__
    except Exception:
        # Registry unavailable or misconfigured - raw table name will do
        pass

    return table_name


def _library_paths() -> tuple:
    paths = {_PACKAGE_DIR}
    for key in ("stdlib", "platstdlib", "purelib", "platlib"):
        path = sysconfig.get_paths().get(key)
        if path:
            paths.add(os.path.abspath(path))
    return tuple(paths)


_LIBRARY_PATHS = _library_paths()


def _is_application_frame(filename: str) -> bool:
    if not filename or filename.startswith("<"):
        return False
    if "site-packages" in filename or "dist-packages" in filename:
        return False
    return not os.path.abspath(filename).startswith(_LIBRARY_PATHS)


def extract_caller_location() -> Optional[str]:
    """Find the first application frame on the current call stack.

    Returns:
        Clickable "path:line" location relative to the working directory,
        or None if every frame belongs to Python, an installed package,
        or this package
    """
    try:
        stack = inspect.stack(0)
    except Exception:
        return None

    try:
        for frame_info in stack[1:]:
            if not _is_application_frame(frame_info.filename):
                continue
            try:
                rel_path = os.path.relpath(frame_info.filename)
            except ValueError:
                rel_path = frame_info.filename
            return f"{rel_path}:{frame_info.lineno}"
        return None
    finally:
        del stack


class NPlusOneDetector:
    """Counts repeated SELECT shapes within a single logical request.

    The detector keeps one scope at a time. Whenever ``check`` sees a
    request id different from the previous call, the scope is discarded
    and counting starts over. Hosts serving requests concurrently should
    give every request its own detector (see QueryLensMiddleware).

    Example:
        detector = NPlusOneDetector()
        for sql in queries:
            finding = detector.check(sql, request_id=request_id)
            if finding:
                logger.warning(f"N+1 detected: {finding.model}")
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD, capture_location: bool = True):
        self.threshold = threshold
        self.capture_location = capture_location
        self._entries: Dict[str, RepetitionEntry] = {}
        self._request_id: Any = None
        self._started = False
        self._lock = threading.Lock()

    @property
    def request_id(self) -> Any:
        return self._request_id

    def entries(self) -> Dict[str, RepetitionEntry]:
        """Snapshot of the tracked queries for the current request."""
        with self._lock:
            return dict(self._entries)

    def reset(self) -> None:
        with self._lock:
            self._entries = {}
            self._request_id = None
            self._started = False

    def check(
        self, sql: Optional[str], operation_name: Optional[str] = None, request_id: Any = None
    ) -> Optional[NPlusOneFinding]:
        """Record one executed query and report it if it just became an N+1.

        Args:
            sql: Executed SQL text
            operation_name: Framework label for the query ("SCHEMA" is skipped)
            request_id: Identifier of the logical request the query belongs to

        Returns:
            NPlusOneFinding the moment a query shape reaches the threshold,
            None otherwise (including every later repeat in the same request)
        """
        text = as_text(sql)

        with self._lock:
            if not self._started or self._request_id != request_id:
                self._request_id = request_id
                self._entries = {}
                self._started = True

            if not text.strip().upper().startswith("SELECT"):
                return None
            if operation_name == "SCHEMA":
                return None

            normalized = normalize_query(text)
            entry = self._entries.get(normalized)
            if entry is None:
                entry = RepetitionEntry(
                    normalized_query=normalized,
                    count=0,
                    first_seen=datetime.now(timezone.utc),
                    sample_sql=text,
                )
                self._entries[normalized] = entry
            entry.count += 1
            count = entry.count

        if count != self.threshold:
            return None

        return NPlusOneFinding(
            query=truncate_sql(text, 200),
            normalized_query=normalized,
            count=count,
            model=guess_model_name(text),
            location=extract_caller_location() if self.capture_location else None,
        )

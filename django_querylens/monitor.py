"""Query analysis context manager for Django tests.

Captures every query executed inside the block, runs them through the N+1
detector and the slow query analyzer, and raises AssertionError when the
configured failure conditions are met.
"""

import inspect
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List

from .collector import QueryCollector, QueryExecutionRecord
from .config import resolve_settings
from .n_plus_one import NPlusOneDetector, NPlusOneFinding
from .slow_query import SlowQueryAnalyzer, SlowQueryFinding
from .sql import truncate_sql


@dataclass
class MonitorResult:
    """Results from a query monitoring session.

    All metric fields are populated by the monitor context manager on exit.

    Attributes:
        response_time_ms: Elapsed time in milliseconds
        query_count: Number of database queries executed
        queries: Raw query dicts from Django's CaptureQueriesContext
        n_plus_one_findings: N+1 patterns, in the order they crossed the threshold
        slow_queries: Queries slower than slow_query_threshold_ms, with suggestions
        settings: Resolved settings used for this monitor
        used_defaults: True if no custom config was found
        failures: Violations that cause AssertionError
        warnings: Informational findings
        test_name: Name of the test method (e.g., "TestClass.test_method")
        test_location: Clickable file:line location (e.g., "tests/test_api.py:42")

    Example:
        with monitor() as m:
            response = self.client.get('/api/posts/')

        print(f"Queries: {m.query_count}")
        m.explain()
    """

    # Metrics (populated on exit)
    response_time_ms: float = 0.0
    query_count: int = 0
    queries: List[Dict[str, str]] = field(default_factory=list)
    n_plus_one_findings: List[NPlusOneFinding] = field(default_factory=list)
    slow_queries: List[SlowQueryFinding] = field(default_factory=list)

    # Configuration (populated on entry)
    settings: Dict[str, Any] = field(default_factory=dict)
    used_defaults: bool = False

    # Results (populated by _check_findings)
    failures: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    # Context info (populated on entry)
    test_name: str = ""
    test_location: str = ""

    def explain(self, file=None) -> None:
        """Print detailed query report.

        Args:
            file: Output stream (default: stdout)
        """
        print(_format_report(self), file=file)

    def __str__(self) -> str:
        return (
            f"MonitorResult(time={self.response_time_ms:.2f}ms, "
            f"queries={self.query_count}, "
            f"n+1={len(self.n_plus_one_findings)}, "
            f"slow={len(self.slow_queries)}, "
            f"failures={len(self.failures)})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "response_time_ms": self.response_time_ms,
            "query_count": self.query_count,
            "queries": self.queries,
            "n_plus_one_findings": [f.to_dict() for f in self.n_plus_one_findings],
            "slow_queries": [f.to_dict() for f in self.slow_queries],
            "settings": {k: v for k, v in self.settings.items() if k != "ignored_sql_patterns"},
            "used_defaults": self.used_defaults,
            "failures": self.failures,
            "warnings": self.warnings,
            "test_name": self.test_name,
            "test_location": self.test_location,
        }


@contextmanager
def monitor(**inline_overrides: Any) -> Iterator[MonitorResult]:
    """Monitor the queries a block of test code executes.

    Args:
        **inline_overrides: Direct setting overrides
            - n_plus_one_threshold: Repeats of one query shape that count as N+1
            - slow_query_threshold_ms: Queries slower than this get suggestions
            - fail_on_n_plus_one: Fail the block on any N+1 finding (default True)
            - fail_on_slow_query: Fail the block on any slow query (default False)

    Yields:
        MonitorResult: Results object (populated on exit)

    Raises:
        AssertionError: If any failure condition is met on context exit

    Example:
        with monitor(n_plus_one_threshold=5) as m:
            response = self.client.get('/api/posts/')
    """
    result = MonitorResult()
    result.settings, result.used_defaults = resolve_settings(**inline_overrides)
    _capture_test_context(result)

    start_time = time.perf_counter()

    try:
        from django.db import connection
        from django.test.utils import CaptureQueriesContext
    except ImportError as e:
        raise ImportError(
            "django-querylens monitor() requires Django to be installed and configured. "
            f"Original error: {e}"
        ) from e

    with CaptureQueriesContext(connection) as query_context:
        yield result

    end_time = time.perf_counter()

    result.response_time_ms = (end_time - start_time) * 1000
    result.query_count = len(query_context)
    result.queries = list(query_context.captured_queries)

    _analyze_queries(result)
    _check_findings(result)

    if result.failures:
        raise AssertionError(_format_report(result))


def _capture_test_context(result: MonitorResult) -> None:
    """Fill test_name and test_location from the calling test method."""
    for frame_info in inspect.stack(0)[2:]:  # Skip this helper and monitor()
        frame = frame_info.frame
        func_name = frame.f_code.co_name

        if func_name.startswith("test_") or "_test_" in func_name.lower():
            try:
                rel_path = os.path.relpath(frame.f_code.co_filename)
            except ValueError:
                rel_path = frame.f_code.co_filename

            if "self" in frame.f_locals:
                cls = frame.f_locals["self"].__class__
                result.test_name = f"{cls.__name__}.{func_name}"
            else:
                result.test_name = func_name

            result.test_location = f"{rel_path}:{frame_info.lineno}"
            break


def _query_duration_ms(query: Dict[str, str]) -> float:
    """CaptureQueriesContext reports seconds as a string."""
    try:
        return float(query.get("time") or 0) * 1000
    except (TypeError, ValueError):
        return 0.0


def _analyze_queries(result: MonitorResult) -> None:
    """Run captured queries through a QueryCollector.

    The whole monitored block is one request scope. Caller locations are
    not captured because analysis happens after the block has finished.
    """
    settings = result.settings
    collector = QueryCollector(
        settings,
        detector=NPlusOneDetector(settings["n_plus_one_threshold"], capture_location=False),
        analyzer=SlowQueryAnalyzer(settings["max_slow_query_history"]),
    )
    scope = id(result)

    for query in result.queries:
        findings = collector.process(
            QueryExecutionRecord(
                sql=query.get("sql", ""),
                duration_ms=_query_duration_ms(query),
                request_id=scope,
            )
        )
        if findings.n_plus_one:
            result.n_plus_one_findings.append(findings.n_plus_one)
        if findings.slow_query:
            result.slow_queries.append(findings.slow_query)


def _check_findings(result: MonitorResult) -> None:
    """Turn findings into failures and warnings according to settings.

    Args:
        result: MonitorResult with findings and settings populated

    Side Effects:
        Populates result.failures and result.warnings lists
    """
    settings = result.settings

    for finding in result.n_plus_one_findings:
        message = (
            f"N+1 pattern detected: {finding.model} loaded {finding.count}+ times "
            f"(threshold: {settings['n_plus_one_threshold']})\n"
            f"   Pattern: {truncate_sql(finding.normalized_query, 80)}\n"
            f"   Example: {truncate_sql(finding.query, 70)}\n"
            f"   Consider using select_related() or prefetch_related()"
        )
        if settings.get("fail_on_n_plus_one", True):
            result.failures.append(message)
        else:
            result.warnings.append(message)

    for slow in result.slow_queries:
        lines = [
            f"Slow query: {_format_duration(slow.duration_ms)} "
            f"(threshold: {_format_duration(settings['slow_query_threshold_ms'])})",
            f"   SQL: {truncate_sql(slow.sql, 80)}",
        ]
        lines.extend(f"   Suggestion: {s}" for s in slow.suggestions)
        message = "\n".join(lines)
        if settings.get("fail_on_slow_query", False):
            result.failures.append(message)
        else:
            result.warnings.append(message)


# ANSI color codes for terminal output
class Colors:
    """ANSI escape codes for terminal colors.

    Respects NO_COLOR environment variable (https://no-color.org/).
    Set NO_COLOR=1 or QUERYLENS_NO_COLOR=1 to disable colors.
    """

    _TRUTHY = ("1", "true", "yes", "on")
    _DISABLED = (
        os.getenv("NO_COLOR", "").lower() in _TRUTHY
        or os.getenv("QUERYLENS_NO_COLOR", "").lower() in _TRUTHY
    )

    RESET = "" if _DISABLED else "\033[0m"
    BOLD = "" if _DISABLED else "\033[1m"
    DIM = "" if _DISABLED else "\033[2m"

    GREEN = "" if _DISABLED else "\033[32m"
    YELLOW = "" if _DISABLED else "\033[33m"
    RED = "" if _DISABLED else "\033[31m"
    BLUE = "" if _DISABLED else "\033[34m"
    CYAN = "" if _DISABLED else "\033[36m"


def _format_report(result: MonitorResult) -> str:
    """Format a detailed query report with ANSI colors.

    Args:
        result: MonitorResult with all fields populated

    Returns:
        Formatted multi-line string report
    """
    lines = []
    c = Colors

    lines.append(f"\n{c.BOLD}{'=' * 60}{c.RESET}")
    lines.append(f"{c.BOLD}{c.CYAN}QUERYLENS REPORT{c.RESET}")
    lines.append(f"{c.BOLD}{'=' * 60}{c.RESET}")

    if result.test_name or result.test_location:
        lines.append("")
        if result.test_name:
            lines.append(f"{c.BLUE}Test:{c.RESET} {result.test_name}")
        if result.test_location:
            lines.append(f"{c.DIM}Location:{c.RESET} {c.CYAN}{result.test_location}{c.RESET}")

    lines.append(f"\n{c.BOLD}METRICS:{c.RESET}")
    lines.append(f"   Elapsed time:  {_format_duration(result.response_time_ms)}")
    lines.append(f"   Query count:   {result.query_count}")

    if result.n_plus_one_findings:
        lines.append(f"\n{c.BOLD}{c.YELLOW}N+1 PATTERNS DETECTED:{c.RESET}")
        for finding in result.n_plus_one_findings:
            lines.append(
                f"   {c.RED}{finding.model}{c.RESET} [{finding.count}x] "
                f"{c.DIM}{truncate_sql(finding.normalized_query, 70)}{c.RESET}"
            )
            lines.append(f"      {c.DIM}-> {truncate_sql(finding.query, 65)}{c.RESET}")
    else:
        lines.append(f"\n{c.GREEN}OK{c.RESET} No N+1 patterns detected")

    if result.slow_queries:
        lines.append(f"\n{c.BOLD}{c.YELLOW}SLOW QUERIES:{c.RESET}")
        for slow in result.slow_queries:
            lines.append(
                f"   [{_format_duration(slow.duration_ms)}] "
                f"{c.DIM}{truncate_sql(slow.sql, 70)}{c.RESET}"
            )
            for suggestion in slow.suggestions:
                lines.append(f"      {c.DIM}- {suggestion}{c.RESET}")

    if result.warnings:
        lines.append(f"\n{c.BOLD}{c.YELLOW}WARNINGS:{c.RESET}")
        for warning in result.warnings:
            for line in warning.split("\n"):
                lines.append(f"   {c.YELLOW}*{c.RESET} {line.strip()}")

    if result.failures:
        lines.append(f"\n{c.BOLD}{c.RED}FAILURES:{c.RESET}")
        for failure in result.failures:
            for line in failure.split("\n"):
                lines.append(f"   {c.RED}x{c.RESET} {line.strip()}")

    if result.used_defaults:
        lines.append(f"\n{c.DIM}Using default settings (no config found){c.RESET}")

    lines.append(f"{c.BOLD}{'=' * 60}{c.RESET}\n")
    return "\n".join(lines)


def _format_duration(ms: float) -> str:
    """Format duration in ms to human-readable string.

    Returns:
        Formatted string (e.g., "123.45ms", "2.50s", "500.00μs")
    """
    if ms < 1:
        return f"{ms * 1000:.2f}μs"
    elif ms < 1000:
        return f"{ms:.2f}ms"
    else:
        return f"{ms / 1000:.2f}s"

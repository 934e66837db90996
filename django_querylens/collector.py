"""Feeds executed queries through the analyzers and forwards findings.

The collector is the seam between the database layer and the analyzers:
it applies the configured filters, runs N+1 detection and slow query
analysis, logs what it finds, and sends Django signals so projects can
route findings to their own reporting tools.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import is_ignored_sql, resolve_settings
from .n_plus_one import NPlusOneDetector, NPlusOneFinding
from .signals import n_plus_one_detected, slow_query_detected
from .slow_query import SlowQueryAnalyzer, SlowQueryFinding
from .sql import extract_operation, truncate_sql

logger = logging.getLogger(__name__)


@dataclass
class QueryExecutionRecord:
    """One executed SQL statement as seen by the collector."""

    sql: str
    duration_ms: float = 0.0
    operation_name: Optional[str] = None
    request_id: Any = None


@dataclass
class CollectedFindings:
    """Findings produced for a single record."""

    n_plus_one: Optional[NPlusOneFinding] = None
    slow_query: Optional[SlowQueryFinding] = None

    def __bool__(self) -> bool:
        return self.n_plus_one is not None or self.slow_query is not None


class QueryCollector:
    """Routes query records to the N+1 detector and slow query analyzer.

    Args:
        settings: Resolved settings dict (see config.resolve_settings)
        detector: Detector to use; a new one is built from settings if omitted
        analyzer: Analyzer to use; a new one is built from settings if omitted
    """

    def __init__(
        self,
        settings: Optional[Dict[str, Any]] = None,
        detector: Optional[NPlusOneDetector] = None,
        analyzer: Optional[SlowQueryAnalyzer] = None,
    ):
        if settings is None:
            settings, _ = resolve_settings()
        self.settings = settings
        if detector is None:
            detector = NPlusOneDetector(settings["n_plus_one_threshold"])
        if analyzer is None:
            analyzer = SlowQueryAnalyzer(settings["max_slow_query_history"])
        self.detector = detector
        self.analyzer = analyzer

    def process(self, record: QueryExecutionRecord) -> CollectedFindings:
        findings = CollectedFindings()
        sql = record.sql

        if is_ignored_sql(sql, self.settings["ignored_sql_patterns"]):
            return findings

        if self.settings["n_plus_one_detection"]:
            findings.n_plus_one = self.detector.check(
                sql, record.operation_name, record.request_id
            )
            if findings.n_plus_one:
                self._report_n_plus_one(findings.n_plus_one, record)

        threshold = self.settings["slow_query_threshold_ms"]
        if (
            self.settings["slow_query_analysis"]
            and threshold is not None
            and record.duration_ms > threshold
        ):
            findings.slow_query = self.analyzer.analyze(
                sql, record.duration_ms, record.operation_name
            )
            self._send(slow_query_detected, findings.slow_query, record)

        logger.debug(
            f"{extract_operation(sql)} ({record.duration_ms:.2f}ms): {truncate_sql(sql, 100)}"
        )
        return findings

    def _report_n_plus_one(self, finding: NPlusOneFinding, record: QueryExecutionRecord) -> None:
        logger.warning(
            f"N+1 query detected: {finding.model} ({finding.count} queries)",
            extra={
                "query": finding.query,
                "count": finding.count,
                "model": finding.model,
                "location": finding.location,
                "request_id": record.request_id,
            },
        )
        self._send(n_plus_one_detected, finding, record)

    def _send(self, signal, finding, record: QueryExecutionRecord) -> None:
        responses = signal.send_robust(sender=self.__class__, finding=finding, record=record)
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error(f"Finding receiver {receiver!r} failed: {response!r}")


class QueryWatcher:
    """Django ``execute_wrapper`` that times each query and collects it.

    Example:
        with connection.execute_wrapper(QueryWatcher(collector, request_id)):
            response = get_response(request)
    """

    def __init__(self, collector: QueryCollector, request_id: Any = None):
        self.collector = collector
        self.request_id = request_id

    def __call__(self, execute, sql, params, many, context):
        start = time.perf_counter()
        try:
            return execute(sql, params, many, context)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            try:
                self.collector.process(
                    QueryExecutionRecord(
                        sql=sql, duration_ms=duration_ms, request_id=self.request_id
                    )
                )
            except Exception:
                logger.exception("Query analysis failed")

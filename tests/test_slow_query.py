"""Tests for slow query analysis."""

import threading
import unittest

from django_querylens.slow_query import (
    SlowQueryAnalyzer,
    SlowQueryFinding,
    generate_suggestions,
)

WHERE_INDEX = "Consider adding an index for the WHERE clause columns"
SELECT_STAR = "Avoid SELECT * - specify only needed columns"
LARGE_LIMIT = "Large LIMIT detected - consider pagination"
ORDER_NO_LIMIT = "ORDER BY without LIMIT may be slow on large tables"
SUBQUERY = "Subquery detected - consider using JOINs or CTEs"
LEADING_WILDCARD = "Leading wildcard in LIKE prevents index usage"
WHERE_OR = "OR in WHERE clause may prevent index usage - consider UNION"


class GenerateSuggestionsTests(unittest.TestCase):
    """Tests for the individual heuristics."""

    def test_select_star_only(self):
        self.assertEqual(generate_suggestions("SELECT * FROM t"), [SELECT_STAR])

    def test_select_star_case_insensitive(self):
        self.assertEqual(generate_suggestions("select   * from t"), [SELECT_STAR])

    def test_where_with_or(self):
        self.assertEqual(
            generate_suggestions("SELECT a FROM t WHERE x=1 OR y=2"), [WHERE_INDEX, WHERE_OR]
        )

    def test_where_check_skipped_when_index_mentioned(self):
        sql = "SELECT a FROM t FORCE INDEX (idx_x) WHERE x = 1"
        self.assertNotIn(WHERE_INDEX, generate_suggestions(sql))

    def test_or_must_be_standalone_word(self):
        sql = "SELECT a FROM t WHERE color = 1 AND origin = 2"
        self.assertEqual(generate_suggestions(sql), [WHERE_INDEX])

    def test_order_by_without_limit(self):
        self.assertEqual(generate_suggestions("SELECT a FROM t ORDER BY a"), [ORDER_NO_LIMIT])

    def test_order_by_with_limit(self):
        self.assertEqual(generate_suggestions("SELECT a FROM t ORDER BY a LIMIT 10"), [])

    def test_large_limit(self):
        self.assertEqual(
            generate_suggestions("SELECT a FROM t ORDER BY a LIMIT 5000"), [LARGE_LIMIT]
        )

    def test_limit_at_boundary(self):
        self.assertEqual(generate_suggestions("SELECT a FROM t LIMIT 1000"), [])
        self.assertEqual(generate_suggestions("SELECT a FROM t limit 1001"), [LARGE_LIMIT])

    def test_join_count(self):
        sql = (
            "SELECT a.id FROM a JOIN b ON b.a_id = a.id JOIN c ON c.b_id = b.id "
            "LEFT JOIN d ON d.c_id = c.id join e ON e.d_id = d.id"
        )
        self.assertEqual(
            generate_suggestions(sql), ["4 JOINs detected - consider query optimization"]
        )

    def test_three_joins_allowed(self):
        sql = "SELECT a.id FROM a JOIN b ON 1=1 JOIN c ON 1=1 JOIN d ON 1=1"
        self.assertEqual(generate_suggestions(sql), [])

    def test_subquery(self):
        sql = "SELECT a FROM t WHERE t.id IN (select t_id FROM u)"
        self.assertEqual(generate_suggestions(sql), [WHERE_INDEX, SUBQUERY])

    def test_leading_wildcard(self):
        sql = "SELECT a FROM t WHERE name LIKE '%smith'"
        self.assertEqual(generate_suggestions(sql), [WHERE_INDEX, LEADING_WILDCARD])

    def test_trailing_wildcard_is_fine(self):
        sql = "SELECT a FROM t WHERE name LIKE 'smith%'"
        self.assertEqual(generate_suggestions(sql), [WHERE_INDEX])

    def test_rules_keep_their_order(self):
        sql = (
            "SELECT * FROM t WHERE name like \"%x\" OR id IN (SELECT id FROM u) "
            "ORDER BY name"
        )
        self.assertEqual(
            generate_suggestions(sql),
            [WHERE_INDEX, SELECT_STAR, ORDER_NO_LIMIT, SUBQUERY, LEADING_WILDCARD, WHERE_OR],
        )

    def test_keywords_inside_literals_still_match(self):
        """Heuristics read raw text, so literals can trigger rules."""
        sql = "SELECT a FROM t WHERE note = 'JOIN JOIN JOIN JOIN'"
        self.assertIn("4 JOINs detected - consider query optimization", generate_suggestions(sql))

    def test_empty_and_malformed(self):
        self.assertEqual(generate_suggestions(""), [])
        self.assertEqual(generate_suggestions(None), [])
        self.assertEqual(generate_suggestions("not sql at all"), [])


class SlowQueryAnalyzerTests(unittest.TestCase):
    """Tests for the analyzer and its history."""

    def setUp(self):
        self.analyzer = SlowQueryAnalyzer()

    def test_analyze_returns_finding(self):
        finding = self.analyzer.analyze("SELECT * FROM t", 250.5, "Post Load")

        self.assertIsInstance(finding, SlowQueryFinding)
        self.assertEqual(finding.sql, "SELECT * FROM t")
        self.assertEqual(finding.duration_ms, 250.5)
        self.assertEqual(finding.operation_name, "Post Load")
        self.assertEqual(finding.suggestions, [SELECT_STAR])
        self.assertIsNotNone(finding.detected_at)

    def test_analyze_does_not_filter_by_duration(self):
        finding = self.analyzer.analyze("SELECT a FROM t", 0.1)

        self.assertEqual(finding.suggestions, [])
        self.assertEqual(len(self.analyzer), 1)

    def test_long_sql_truncated_but_fully_analyzed(self):
        """Suggestions come from the full text even when storage truncates it."""
        sql = "SELECT a FROM t " + "x" * 573 + " ORDER BY a"
        self.assertEqual(len(sql), 600)

        finding = self.analyzer.analyze(sql, 150.0)

        self.assertEqual(len(finding.sql), 503)
        self.assertEqual(finding.sql, sql[:500] + "...")
        self.assertEqual(finding.suggestions, [ORDER_NO_LIMIT])
        self.assertEqual(len(sql), 600)

    def test_recent_returns_last_n_in_order(self):
        for n in range(5):
            self.analyzer.analyze(f"SELECT a FROM t{'x' * n}", float(n))

        recent = self.analyzer.recent(3)

        self.assertEqual([f.duration_ms for f in recent], [2.0, 3.0, 4.0])

    def test_recent_default_limit(self):
        for n in range(15):
            self.analyzer.analyze("SELECT 1", float(n))

        recent = self.analyzer.recent()

        self.assertEqual(len(recent), 10)
        self.assertEqual(recent[0].duration_ms, 5.0)

    def test_recent_with_fewer_findings(self):
        self.analyzer.analyze("SELECT 1", 1.0)
        self.assertEqual(len(self.analyzer.recent(5)), 1)

    def test_recent_zero(self):
        self.analyzer.analyze("SELECT 1", 1.0)
        self.assertEqual(self.analyzer.recent(0), [])

    def test_reset_clears_history(self):
        self.analyzer.analyze("SELECT 1", 1.0)
        self.analyzer.reset()

        self.assertEqual(self.analyzer.recent(), [])
        self.assertEqual(len(self.analyzer), 0)

    def test_bounded_history(self):
        analyzer = SlowQueryAnalyzer(max_history=2)
        for n in range(4):
            analyzer.analyze("SELECT 1", float(n))

        self.assertEqual([f.duration_ms for f in analyzer.recent()], [2.0, 3.0])

    def test_concurrent_analyze(self):
        analyzer = SlowQueryAnalyzer(max_history=1000)

        def worker(n):
            for i in range(50):
                analyzer.analyze(f"SELECT {n}, {i}", 150.0)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        with self.assertLogs("django_querylens.slow_query", level="WARNING"):
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(len(analyzer), 200)
        self.assertEqual(len(analyzer.recent(1000)), 200)

    def test_logs_warning(self):
        with self.assertLogs("django_querylens.slow_query", level="WARNING") as logs:
            self.analyzer.analyze("SELECT * FROM t", 321.0)

        self.assertIn("Slow query detected", logs.output[0])
        self.assertEqual(logs.records[0].suggestions, [SELECT_STAR])

    def test_finding_to_dict(self):
        data = self.analyzer.analyze("SELECT * FROM t", 120.0).to_dict()

        self.assertEqual(data["sql"], "SELECT * FROM t")
        self.assertEqual(data["suggestions"], [SELECT_STAR])
        self.assertIsInstance(data["detected_at"], str)


if __name__ == "__main__":
    unittest.main()

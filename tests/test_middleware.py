"""Tests for the per-request middleware.

The database connections are replaced with mocks, so no configured Django
project is needed.
"""

import unittest
from types import SimpleNamespace
from unittest import mock

from django_querylens.collector import QueryWatcher
from django_querylens.middleware import QueryLensMiddleware


class QueryLensMiddlewareTests(unittest.TestCase):
    def setUp(self):
        self.default_db = mock.MagicMock()
        self.replica_db = mock.MagicMock()
        self.wrappers = []
        for connection in (self.default_db, self.replica_db):
            connection.execute_wrapper.side_effect = self._capture_wrapper

        connections = mock.MagicMock()
        connections.all.return_value = [self.default_db, self.replica_db]
        patcher = mock.patch("django_querylens.middleware.connections", new=connections)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _capture_wrapper(self, wrapper):
        self.wrappers.append(wrapper)
        return mock.MagicMock()

    def make_request(self, **meta):
        return SimpleNamespace(META=meta)

    def test_installs_watcher_for_request(self):
        middleware = QueryLensMiddleware(lambda request: "response")

        response = middleware(self.make_request(HTTP_X_REQUEST_ID="abc-123"))

        self.assertEqual(response, "response")
        self.assertEqual(len(self.wrappers), 2)
        self.assertIsInstance(self.wrappers[0], QueryWatcher)
        self.assertEqual(self.wrappers[0].request_id, "abc-123")

    def test_wraps_every_database_alias(self):
        """Queries on any alias reach the same watcher."""
        middleware = QueryLensMiddleware(lambda request: "response")

        middleware(self.make_request())

        self.default_db.execute_wrapper.assert_called_once()
        self.replica_db.execute_wrapper.assert_called_once()
        self.assertIs(self.wrappers[0], self.wrappers[1])

    def test_generates_request_id(self):
        middleware = QueryLensMiddleware(lambda request: "response")

        middleware(self.make_request())
        middleware(self.make_request())

        first, second = self.wrappers[0].request_id, self.wrappers[2].request_id
        self.assertEqual(len(first), 32)
        self.assertNotEqual(first, second)

    def test_each_request_gets_its_own_detector(self):
        """Counts never leak between requests, even with the same id."""
        middleware = QueryLensMiddleware(lambda request: "response")

        middleware(self.make_request(HTTP_X_REQUEST_ID="same"))
        middleware(self.make_request(HTTP_X_REQUEST_ID="same"))

        first, second = self.wrappers[0].collector, self.wrappers[2].collector
        self.assertIsNot(first.detector, second.detector)
        self.assertIs(first.analyzer, second.analyzer)
        self.assertIs(first.analyzer, middleware.analyzer)

    def test_queries_during_request_are_analyzed(self):
        def view(request):
            watcher = self.wrappers[-1]
            for n in range(3):
                watcher(mock.Mock(), "SELECT * FROM posts WHERE id = %s", (n,), False, {})
            return "response"

        middleware = QueryLensMiddleware(view)
        with self.assertLogs("django_querylens.collector", level="WARNING") as logs:
            middleware(self.make_request())

        self.assertIn("N+1 query detected", logs.output[0])

    def test_slow_query_history_shared_across_requests(self):
        """Slow queries from separate requests land in one history, in order."""
        def view(request):
            self.wrappers[-1](mock.Mock(), request.sql, (), False, {})
            return "response"

        middleware = QueryLensMiddleware(view)
        clock = mock.MagicMock()
        # Each query starts at one tick and ends 500ms later
        clock.perf_counter.side_effect = [0.0, 0.5, 1.0, 1.5]

        with mock.patch("django_querylens.collector.time", new=clock):
            for sql in ("SELECT * FROM posts", "SELECT * FROM comments"):
                request = self.make_request()
                request.sql = sql
                middleware(request)

        recent = middleware.analyzer.recent()
        self.assertEqual(len(recent), 2)
        self.assertEqual([f.sql for f in recent], ["SELECT * FROM posts", "SELECT * FROM comments"])
        self.assertAlmostEqual(recent[0].duration_ms, 500.0)

    def test_unsampled_requests_skip_instrumentation(self):
        middleware = QueryLensMiddleware(lambda request: "response")
        middleware.settings = dict(middleware.settings, sample_rate=0.0)

        self.assertEqual(middleware(self.make_request()), "response")
        self.default_db.execute_wrapper.assert_not_called()
        self.replica_db.execute_wrapper.assert_not_called()


if __name__ == "__main__":
    unittest.main()

"""Per-request query analysis middleware.

Add ``django_querylens.middleware.QueryLensMiddleware`` to ``MIDDLEWARE``.
Every request gets its own N+1 detector, so concurrent requests never
share counts; slow query history is shared across requests.
"""

import uuid
from contextlib import ExitStack

from django.db import connections

from .collector import QueryCollector, QueryWatcher
from .config import resolve_settings, should_sample
from .n_plus_one import NPlusOneDetector
from .slow_query import SlowQueryAnalyzer

REQUEST_ID_HEADER = "HTTP_X_REQUEST_ID"


class QueryLensMiddleware:
    """Analyzes the queries each request runs, on every configured database.

    One QueryWatcher is installed on each connection alias for the length
    of the request. All aliases feed the same collector, so an N+1 spread
    over several databases is still counted per request.

    Attributes:
        settings: Resolved settings, read once at startup
        analyzer: Slow query history shared by all requests
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.settings, _ = resolve_settings()
        self.analyzer = SlowQueryAnalyzer(self.settings["max_slow_query_history"])

    def __call__(self, request):
        if not should_sample(self.settings["sample_rate"]):
            return self.get_response(request)

        request_id = request.META.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        collector = QueryCollector(
            self.settings,
            detector=NPlusOneDetector(self.settings["n_plus_one_threshold"]),
            analyzer=self.analyzer,
        )
        watcher = QueryWatcher(collector, request_id)

        with ExitStack() as stack:
            for connection in connections.all():
                stack.enter_context(connection.execute_wrapper(watcher))
            return self.get_response(request)

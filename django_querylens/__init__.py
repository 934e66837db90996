"""django-querylens - N+1 and slow query detection for Django.

Core analyzers are plain Python; the middleware and monitor() wire them
into Django's database layer.
"""

from .cache_efficiency import CacheEfficiencyTracker
from .collector import QueryCollector, QueryExecutionRecord
from .monitor import MonitorResult, monitor
from .n_plus_one import NPlusOneDetector, NPlusOneFinding, normalize_query
from .slow_query import SlowQueryAnalyzer, SlowQueryFinding

# Version is managed in pyproject.toml - read dynamically
try:
    from importlib.metadata import version
    __version__ = version("django-querylens")
except Exception:
    __version__ = "unknown"

__all__ = [
    "__version__",
    "CacheEfficiencyTracker",
    "MonitorResult",
    "NPlusOneDetector",
    "NPlusOneFinding",
    "QueryCollector",
    "QueryExecutionRecord",
    "SlowQueryAnalyzer",
    "SlowQueryFinding",
    "monitor",
    "normalize_query",
]

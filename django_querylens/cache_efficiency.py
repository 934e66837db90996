"""Cache hit/miss bookkeeping with a rolling window of recent reads."""

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, Optional

WINDOW_SIZE = 1000
RECENT_READS = 100


class CacheEfficiencyTracker:
    """Tracks cache reads, writes and generates to report a hit rate.

    Events can be recorded with the ``record_*`` methods, or passed to
    ``track`` as dicts shaped like ``{"name": "cache_read", "payload":
    {"key": ..., "hit": True}, "duration_ms": 0.4}``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reads: Deque[Dict[str, Any]] = deque(maxlen=WINDOW_SIZE)
        self._hits = 0
        self._misses = 0
        self._writes = 0
        self._generates = 0

    def track(self, event: Dict[str, Any]) -> None:
        name = event.get("name")
        payload = event.get("payload") or {}
        duration_ms = event.get("duration_ms") or 0.0

        if name == "cache_read":
            self.record_read(payload.get("key"), bool(payload.get("hit")), duration_ms)
        elif name == "cache_read_multi":
            self.record_read_multi(payload.get("key") or [], payload.get("hits") or [], duration_ms)
        elif name in ("cache_write", "cache_write_multi"):
            self.record_write()
        elif name == "cache_generate":
            self.record_generate()
        elif name == "cache_fetch_hit":
            self.record_fetch_hit()

    def record_read(self, key: Optional[str], hit: bool, duration_ms: float = 0.0) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
            self._reads.append(
                {
                    "key": key,
                    "hit": hit,
                    "duration_ms": duration_ms,
                    "timestamp": datetime.now(timezone.utc),
                }
            )

    def record_read_multi(
        self, keys: Iterable[str], hits: Iterable[str], duration_ms: float = 0.0
    ) -> None:
        keys = list(keys)
        hits = list(hits)
        with self._lock:
            self._hits += len(hits)
            self._misses += len(keys) - len(hits)
            self._reads.append(
                {
                    "key": f"multi:{len(keys)}",
                    "hit": len(hits) == len(keys),
                    "duration_ms": duration_ms,
                    "timestamp": datetime.now(timezone.utc),
                    "multi": True,
                    "hit_count": len(hits),
                    "total_count": len(keys),
                }
            )

    def record_write(self) -> None:
        with self._lock:
            self._writes += 1

    def record_generate(self) -> None:
        with self._lock:
            self._generates += 1

    def record_fetch_hit(self) -> None:
        with self._lock:
            self._hits += 1

    def hit_rate(self) -> float:
        """Percentage of reads that were hits, 0.0 before any read."""
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return round(self._hits / total * 100, 2)

    def efficiency_report(self) -> Dict[str, Any]:
        with self._lock:
            recent = list(self._reads)[-RECENT_READS:]
            report = {
                "hit_rate": self.hit_rate(),
                "total_hits": self._hits,
                "total_misses": self._misses,
                "total_writes": self._writes,
                "total_generates": self._generates,
            }
        report["recent_reads"] = _recent_reads_stats(recent)
        return report

    def reset(self) -> None:
        with self._lock:
            self._reads.clear()
            self._hits = 0
            self._misses = 0
            self._writes = 0
            self._generates = 0


def _recent_reads_stats(reads) -> Dict[str, Any]:
    if not reads:
        return {}

    hits = sum(1 for read in reads if read["hit"])
    return {
        "count": len(reads),
        "hits": hits,
        "misses": len(reads) - hits,
        "hit_rate": round(hits / len(reads) * 100, 2),
        "avg_duration_ms": round(sum(read["duration_ms"] for read in reads) / len(reads), 3),
    }

"""
Metrics Collection for the document confidence pipeline

Collects in-process counters for:
- Line match resolutions (by match source and status)
- Collaborator lookup failures (by lookup kind)
- Auto-post attempts (by outcome and reason)
- Anomaly flags raised (by flag)

Counters live in memory only; callers that need durability scrape
`get_summary()` into their own metrics backend.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class MatchMetrics:
    """Metrics for line match resolution."""
    resolved: int = 0
    by_source: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    by_status: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    lookup_failures: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class AutoPostMetrics:
    """Metrics for auto-post attempts."""
    attempted: int = 0
    posted: int = 0
    rejected: int = 0
    by_reason: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    anomaly_flags: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_line_match("receipt_place_alias", "matched")
        metrics.record_auto_post(posted=False, reason="low_confidence")
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.matches = MatchMetrics()
        self.auto_post = AutoPostMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Line Matching
    # =========================================================================

    def record_line_match(self, match_source: Optional[str], status: str):
        """Record one resolved line (match_source is None when nothing matched)."""
        with self._lock:
            self.matches.resolved += 1
            self.matches.by_source[match_source or "none"] += 1
            self.matches.by_status[status] += 1

    def record_lookup_failure(self, lookup: str):
        """Record a failed (fail-open) collaborator lookup."""
        with self._lock:
            self.matches.lookup_failures[lookup] += 1

    # =========================================================================
    # Auto-Post
    # =========================================================================

    def record_auto_post(self, posted: bool, reason: Optional[str], anomaly_flags=()):
        """Record the outcome of one auto-post attempt."""
        with self._lock:
            self.auto_post.attempted += 1
            if posted:
                self.auto_post.posted += 1
            else:
                self.auto_post.rejected += 1
            self.auto_post.by_reason[reason or "posted"] += 1
            for flag in anomaly_flags:
                self.auto_post.anomaly_flags[getattr(flag, "value", flag)] += 1

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all counters as plain dicts."""
        with self._lock:
            return {
                "line_matches": {
                    "resolved": self.matches.resolved,
                    "by_source": dict(self.matches.by_source),
                    "by_status": dict(self.matches.by_status),
                    "lookup_failures": dict(self.matches.lookup_failures),
                },
                "auto_post": {
                    "attempted": self.auto_post.attempted,
                    "posted": self.auto_post.posted,
                    "rejected": self.auto_post.rejected,
                    "by_reason": dict(self.auto_post.by_reason),
                    "anomaly_flags": dict(self.auto_post.anomaly_flags),
                },
            }

    def reset(self):
        """Clear all counters."""
        with self._lock:
            self.matches = MatchMetrics()
            self.auto_post = AutoPostMetrics()


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    return MetricsCollector.instance()

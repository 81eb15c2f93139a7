"""
Encrypted Reputation Ledger Metrics.

Provides Prometheus-compatible metrics for monitoring submissions,
aggregations, the decryption protocol and badge issuance.
"""

import logging
import threading
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, generate_latest

logger = logging.getLogger(__name__)

CALLBACK_OUTCOMES = (
    "resolved",
    "unknown",
    "expired",
    "invalid_proof",
    "duplicate_mint_skipped",
)


class LedgerMetrics:
    """
    Metrics collector for ledger operations.

    Keeps a simple in-memory counter table and mirrors every event into
    Prometheus counters on its own registry.

    Example:
        >>> metrics = LedgerMetrics()
        >>> metrics.record_submission()
        >>> metrics.record_callback("resolved")
        >>> print(metrics.get_stats())
    """

    def __init__(self, namespace: str = "repledger", registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collector.

        Args:
            namespace: Metric name prefix.
            registry: Optional Prometheus registry (a private one is created if None).
        """
        self._namespace = namespace
        self._lock = threading.Lock()
        self._counters: Dict[str, float] = {}
        self._registry = registry or CollectorRegistry()
        self._prom_metrics: Dict[str, Any] = {}
        self._setup_prometheus_metrics()

    def _setup_prometheus_metrics(self) -> None:
        reg = self._registry

        self._prom_metrics["submissions_total"] = Counter(
            f"{self._namespace}_submissions_total",
            "Total encrypted activity submissions",
            registry=reg,
        )

        self._prom_metrics["aggregations_total"] = Counter(
            f"{self._namespace}_aggregations_total",
            "Total score aggregations",
            ["kind"],
            registry=reg,
        )

        self._prom_metrics["decryption_requests_total"] = Counter(
            f"{self._namespace}_decryption_requests_total",
            "Total decryption requests issued",
            registry=reg,
        )

        self._prom_metrics["callbacks_total"] = Counter(
            f"{self._namespace}_callbacks_total",
            "Total decryption callbacks by outcome",
            ["outcome"],
            registry=reg,
        )

        self._prom_metrics["badges_minted_total"] = Counter(
            f"{self._namespace}_badges_minted_total",
            "Total badges minted",
            ["tier"],
            registry=reg,
        )

    def _bump(self, key: str) -> None:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + 1

    def record_submission(self) -> None:
        """Record an activity submission."""
        self._bump("submissions")
        self._prom_metrics["submissions_total"].inc()

    def record_aggregation(self, kind: str) -> None:
        """Record a score aggregation ('single' or 'batch')."""
        self._bump(f"aggregations_{kind}")
        self._prom_metrics["aggregations_total"].labels(kind=kind).inc()

    def record_decryption_request(self) -> None:
        """Record a decryption request sent to the oracle."""
        self._bump("decryption_requests")
        self._prom_metrics["decryption_requests_total"].inc()

    def record_callback(self, outcome: str) -> None:
        """Record the outcome of a decryption callback."""
        if outcome not in CALLBACK_OUTCOMES:
            raise ValueError(f"Unknown callback outcome: {outcome}")
        self._bump(f"callbacks_{outcome}")
        self._prom_metrics["callbacks_total"].labels(outcome=outcome).inc()

    def record_mint(self, tier: str) -> None:
        """Record a badge mint."""
        self._bump("badges_minted")
        self._prom_metrics["badges_minted_total"].labels(tier=tier).inc()

    def get_stats(self) -> Dict[str, Any]:
        """Get current metrics as a dictionary."""
        with self._lock:
            stats = dict(self._counters)

        callbacks = sum(v for k, v in stats.items() if k.startswith("callbacks_"))
        if callbacks > 0:
            stats["callback_rejection_rate"] = (
                stats.get("callbacks_unknown", 0)
                + stats.get("callbacks_expired", 0)
                + stats.get("callbacks_invalid_proof", 0)
            ) / callbacks
        return stats

    def get_prometheus_metrics(self) -> bytes:
        """Get metrics in Prometheus text format."""
        return generate_latest(self._registry)


# Global metrics instance
_global_metrics: Optional[LedgerMetrics] = None


def get_metrics() -> LedgerMetrics:
    """Get or create the global metrics instance."""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = LedgerMetrics()
    return _global_metrics

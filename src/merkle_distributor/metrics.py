"""
merkle_distributor/metrics.py

Prometheus metrics collection for merkle_distributor.

Provides metrics for monitoring ledger funding, claim throughput and
rejected operations.
"""

import time
import logging
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Dict, Any

from .config import VERSION
from .protocol.distributor import (
    ClaimedEvent,
    DepositedEvent,
    EmergencyWithdrawalEvent,
    LedgerEvent,
    MerkleRootUpdatedEvent,
)

if TYPE_CHECKING:
    from .protocol.distributor import MerkleDistributor

logger = logging.getLogger("merkle_distributor.metrics")


class DistributorMetrics:
    """
    Prometheus metrics collector for a MerkleDistributor.

    Counters are fed by the ledger's event stream; gauges are read from the
    ledger on every collection. Events arrive outside the ledger lock, so
    counters are guarded by their own lock.

    Usage:
        from merkle_distributor.metrics import DistributorMetrics

        metrics = DistributorMetrics(distributor)
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "merkle_distributor_balance": {
            "type": "gauge",
            "help": "Funds currently held by the distributor",
        },
        "merkle_distributor_claimants": {
            "type": "gauge",
            "help": "Number of accounts with a recorded claim",
        },
        "merkle_distributor_claims_total": {
            "type": "counter",
            "help": "Total number of successful claims",
        },
        "merkle_distributor_zero_claims_total": {
            "type": "counter",
            "help": "Successful claims that transferred nothing",
        },
        "merkle_distributor_claimed_amount_total": {
            "type": "counter",
            "help": "Total amount transferred by claims",
        },
        "merkle_distributor_deposited_amount_total": {
            "type": "counter",
            "help": "Total amount deposited",
        },
        "merkle_distributor_withdrawn_amount_total": {
            "type": "counter",
            "help": "Total amount moved out by emergency withdrawals",
        },
        "merkle_distributor_root_rotations_total": {
            "type": "counter",
            "help": "Number of merkle root updates",
        },
        "merkle_distributor_rejected_total": {
            "type": "counter",
            "help": "Rejected operations by error type",
        },
        "merkle_distributor_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, distributor: "MerkleDistributor"):
        """
        Initialize metrics collector.

        Args:
            distributor: Ledger to collect metrics from
        """
        self.distributor = distributor
        self._start_time = time.time()
        self._lock = threading.Lock()
        self.reset_counters()
        distributor.subscribe(self.record_event)

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        with self._lock:
            self._claims = 0
            self._zero_claims = 0
            self._claimed_amount = 0
            self._deposited_amount = 0
            self._withdrawn_amount = 0
            self._root_rotations = 0
            self._rejected: Dict[str, int] = defaultdict(int)

    def record_event(self, event: LedgerEvent) -> None:
        """Update counters from a ledger event."""
        with self._lock:
            if isinstance(event, ClaimedEvent):
                self._claims += 1
                self._claimed_amount += event.amount
                if event.amount == 0:
                    self._zero_claims += 1
            elif isinstance(event, DepositedEvent):
                self._deposited_amount += event.amount
            elif isinstance(event, EmergencyWithdrawalEvent):
                self._withdrawn_amount += event.amount
            elif isinstance(event, MerkleRootUpdatedEvent):
                self._root_rotations += 1

    def record_rejection(self, error: Exception) -> None:
        """Record an operation rejected by the ledger."""
        with self._lock:
            self._rejected[type(error).__name__] += 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float):
            add_header(name)
            lines.append(f"{name} {value}")

        try:
            stats = self.distributor.get_stats()
            counters = self._counters()

            add_metric("merkle_distributor_balance", stats["balance"])
            add_metric("merkle_distributor_claimants", stats["claimants"])
            add_metric("merkle_distributor_claims_total", counters["claims"])
            add_metric("merkle_distributor_zero_claims_total", counters["zero_claims"])
            add_metric("merkle_distributor_claimed_amount_total", counters["claimed_amount"])
            add_metric("merkle_distributor_deposited_amount_total", counters["deposited_amount"])
            add_metric("merkle_distributor_withdrawn_amount_total", counters["withdrawn_amount"])
            add_metric("merkle_distributor_root_rotations_total", counters["root_rotations"])

            add_header("merkle_distributor_rejected_total")
            for error_type, count in sorted(counters["rejected"].items()):
                lines.append(f'merkle_distributor_rejected_total{{error="{error_type}"}} {count}')

            add_metric("merkle_distributor_uptime_seconds", time.time() - self._start_time)

            # Ledger info (with labels)
            lines.append("# HELP merkle_distributor_info Ledger information")
            lines.append("# TYPE merkle_distributor_info gauge")
            lines.append(
                f'merkle_distributor_info{{merkle_root="{stats["merkle_root"]}",'
                f'version="{VERSION}"}} 1'
            )

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        stats = self._counters()
        stats["uptime_seconds"] = time.time() - self._start_time
        return stats

    def _counters(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "claims": self._claims,
                "zero_claims": self._zero_claims,
                "claimed_amount": self._claimed_amount,
                "deposited_amount": self._deposited_amount,
                "withdrawn_amount": self._withdrawn_amount,
                "root_rotations": self._root_rotations,
                "rejected": dict(self._rejected),
            }

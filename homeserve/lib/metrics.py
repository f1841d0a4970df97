"""
Prometheus-compatible metrics for observability.

Tracks the booking/payment lifecycle:
- Bookings created and ledger transitions (by action and resulting status)
- Payment settlements and failures (by source: verify or webhook)
- Rejected webhooks
- Notification outcomes (by event and outcome)
- Location updates (by source: http or socket)

Usage:
    from homeserve.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_transition(action="cancel", status="cancelled")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


HELP_TEXTS = {
    "bookings_created_total": "Total number of bookings created",
    "booking_transitions_total": "Total number of booking state transitions",
    "payments_settled_total": "Total number of payments marked paid",
    "payments_failed_total": "Total number of payments marked failed",
    "webhooks_rejected_total": "Total number of webhooks rejected for bad signatures",
    "notifications_total": "Total number of notification dispatch attempts",
    "location_updates_total": "Total number of worker location updates relayed",
}


class MetricsCollector:
    """
    Prometheus-style metrics collector.

    Counters are keyed by (metric_name, sorted label pairs).
    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    # ===== Booking Metrics =====

    def increment_bookings_created(self, amount: int = 1):
        self._increment("bookings_created_total", {}, amount)

    def increment_transition(self, action: str, status: str, amount: int = 1):
        """
        Increment ledger transitions counter.

        Args:
            action: Ledger operation (cancel, confirm_cod, assign_worker, override, ...)
            status: Booking status after the operation
            amount: Increment amount
        """
        labels = {"action": action.lower(), "status": status.lower()}
        self._increment("booking_transitions_total", labels, amount)

    # ===== Payment Metrics =====

    def increment_payment_settled(self, source: str, amount: int = 1):
        self._increment("payments_settled_total", {"source": source.lower()}, amount)

    def increment_payment_failed(self, source: str, amount: int = 1):
        self._increment("payments_failed_total", {"source": source.lower()}, amount)

    def increment_webhook_rejected(self, amount: int = 1):
        self._increment("webhooks_rejected_total", {}, amount)

    # ===== Side-channel Metrics =====

    def increment_notification(self, event: str, outcome: str, amount: int = 1):
        """
        Increment notification counter.

        Args:
            event: Notification event kind (booking_confirmation, payment_success, ...)
            outcome: sent, failed or skipped
            amount: Increment amount
        """
        labels = {"event": event.lower(), "outcome": outcome.lower()}
        self._increment("notifications_total", labels, amount)

    def increment_location_update(self, source: str, amount: int = 1):
        self._increment("location_updates_total", {"source": source.lower()}, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            output_lines.append(f"# HELP {metric_name} {HELP_TEXTS.get(metric_name, 'Counter metric')}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of a specific counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()

"""Prometheus metrics for sidecar-terminator."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Watch metrics
watcher_events_total = Counter(
    "sidecar_terminator_watcher_events_total",
    "Total watch events received",
    ["watcher", "event_type"],
)

watcher_errors_total = Counter(
    "sidecar_terminator_watcher_errors_total",
    "Total watch API errors",
    ["watcher", "status_code"],
)

watcher_reconnects_total = Counter(
    "sidecar_terminator_watcher_reconnects_total",
    "Total watch reconnections",
    ["watcher", "reason"],
)

watcher_relistings_total = Counter(
    "sidecar_terminator_watcher_relistings_total",
    "Total full relists performed by a watcher",
    ["watcher"],
)

watcher_backoff_seconds = Histogram(
    "sidecar_terminator_watcher_backoff_seconds",
    "Watcher back-off delays in seconds",
    ["watcher"],
    buckets=(1.0, 2.0, 4.0, 8.0, 16.0, 32.0, 60.0),
)

# Pod store
pod_store_pods = Gauge(
    "sidecar_terminator_pod_store_pods",
    "Number of pods held by the pod store",
)

# Event filter
filter_decisions_total = Counter(
    "sidecar_terminator_filter_decisions_total",
    "Event filter decisions",
    ["decision"],
)

# Queue
queue_depth = Gauge(
    "sidecar_terminator_queue_depth",
    "Number of pod identities waiting to be reconciled",
)

queue_adds_total = Counter(
    "sidecar_terminator_queue_adds_total",
    "Total enqueues that produced a new pending item",
)

queue_retries_total = Counter(
    "sidecar_terminator_queue_retries_total",
    "Total rate-limited re-enqueues",
)

queue_drops_total = Counter(
    "sidecar_terminator_queue_drops_total",
    "Items dropped after exhausting the retry ceiling",
)

queue_retry_delay_seconds = Histogram(
    "sidecar_terminator_queue_retry_delay_seconds",
    "Back-off delay applied to re-enqueued items",
    buckets=(0.01, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0, 1000.0),
)

# Reconcile
reconcile_total = Counter(
    "sidecar_terminator_reconcile_total",
    "Reconciliations by outcome",
    ["outcome"],
)

reconcile_duration_seconds = Histogram(
    "sidecar_terminator_reconcile_duration_seconds",
    "Reconciliation duration in seconds",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)

# Termination
sidecar_signals_total = Counter(
    "sidecar_terminator_sidecar_signals_total",
    "Termination signals sent to sidecar containers",
    ["result"],
)

# Event recorder
recorded_events_total = Counter(
    "sidecar_terminator_recorded_events_total",
    "Kubernetes Events written by the recorder",
    ["reason", "success"],
)


def serve_metrics(port: int) -> None:
    """Expose the default registry over HTTP on *port* (background thread)."""
    start_http_server(port)

"""Monitoring and metrics instrumentation for the mail threat scanner.

Exports custom Prometheus metrics for operational monitoring and alerting.
"""

from mailguard.monitoring.metrics import (
    cache_lookups_total,
    cache_write_failures_total,
    client_reconnects_total,
    inference_latency_seconds,
    inference_retries_total,
    orchestrator_queue_depth,
    orchestrator_responses_total,
    worker_state,
    worker_transitions_total,
)

__all__ = [
    "orchestrator_responses_total",
    "orchestrator_queue_depth",
    "worker_state",
    "worker_transitions_total",
    "inference_latency_seconds",
    "inference_retries_total",
    "cache_lookups_total",
    "cache_write_failures_total",
    "client_reconnects_total",
]

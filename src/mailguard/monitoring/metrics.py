"""Custom Prometheus metrics for the mail threat scanner.

These metrics are exposed at /metrics endpoint and should be scraped by Prometheus.
Alert rules should be configured for:
- orchestrator_responses_total{outcome="error"} (engine or load failures)
- worker_state stuck in insufficient_resources (device under memory pressure)
- orchestrator_queue_depth (unbounded FIFO growth)
- client_reconnects_total (channel instability)
"""

from prometheus_client import Counter, Enum, Gauge, Histogram

from mailguard.models.enums import WorkerState

# === Orchestrator Metrics ===

orchestrator_responses_total = Counter(
    "orchestrator_responses_total",
    "Terminal responses delivered by the orchestrator by outcome",
    ["outcome"],
)
"""
Terminal responses by outcome.

Labels:
- outcome: completion, insufficient_resources, load_error, engine_error, dropped

Every admitted request increments exactly one outcome.
"""

orchestrator_queue_depth = Gauge(
    "orchestrator_queue_depth",
    "Requests admitted but not yet forwarded to the worker",
)
"""
Admission FIFO depth. The FIFO has no bound.

Alert thresholds:
- WARN: depth > 50 for 5 minutes
"""

# === Worker Lifecycle Metrics ===

worker_state = Enum(
    "worker_state",
    "Current state of the ephemeral inference worker",
    states=[state.value for state in WorkerState],
)

worker_transitions_total = Counter(
    "worker_transitions_total",
    "Worker state transitions",
    ["from_state", "to_state"],
)
"""
Worker state transitions.

A high rate of ready -> unloading indicates IDLE_TEARDOWN_SECONDS is too
short for the observed traffic.
"""

# === Inference Metrics ===

inference_latency_seconds = Histogram(
    "inference_latency_seconds",
    "Worker inference latency in seconds (budget check + completion + parse)",
    ["outcome"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

inference_retries_total = Counter(
    "inference_retries_total",
    "Completion retries after parse or engine failure",
    ["error_kind"],
)

# === Cache Metrics ===

cache_lookups_total = Counter(
    "cache_lookups_total",
    "Fingerprint cache lookups by result",
    ["result"],
)
"""
Labels:
- result: hit, miss, error
"""

cache_write_failures_total = Counter(
    "cache_write_failures_total",
    "Fingerprint cache writes that failed (non-fatal)",
)

# === Client Channel Metrics ===

client_reconnects_total = Counter(
    "client_reconnects_total",
    "Reconnect attempts by the client request queue by result",
    ["result"],
)

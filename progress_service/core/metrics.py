"""Prometheus metric inventory for progress-service.

Every metric the service exposes is declared here; the modules that own
the behavior import and update them.  Mutations run in the worker, so
the ``progress_*`` series are the only place a rejected advance or
retreat shows up as a number rather than a log line.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Progress engine
# ---------------------------------------------------------------------------

PROGRESS_MUTATIONS = Counter(
    "progress_mutations_total",
    "Completed progress mutations by operation and outcome",
    ["operation", "outcome"],  # advance|retreat, ok|<error code>
)

PROGRESS_WRITE_CONFLICTS = Counter(
    "progress_write_conflicts_total",
    "Optimistic version conflicts hit while saving a progress record",
    ["operation"],
)

MUTATION_DURATION = Histogram(
    "progress_mutation_duration_seconds",
    "Time spent running one detached progress mutation",
    ["operation"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache operations by result",
    ["operation"],  # hit|miss|invalidate|invalidate_group
)

CERTIFICATE_ATTEMPTS = Counter(
    "certificate_attempts_total",
    "Certificate issuance attempts by result",
    ["result"],  # enqueued|enqueue_failed|eligible|ineligible
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # progress_mutations|certificate_issuance
)

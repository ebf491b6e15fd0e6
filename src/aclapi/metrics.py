"""
Prometheus metrics for the sync engine and the directory client.

Metrics are module-level collectors registered on the default registry,
exposed by the worker through start_metrics_server().
"""

from prometheus_client import Counter, Histogram, start_http_server


NAMESPACE = "acl_api"


def exponential_buckets(start: float, factor: float, count: int) -> list[float]:
    """Return count buckets starting at start, each factor times the previous."""
    return [start * factor**i for i in range(count)]


RULE_SYNC_DURATION = Histogram(
    "rule_sync_duration_seconds",
    "The duration of rule sync in seconds.",
    ["engine"],
    namespace=NAMESPACE,
    subsystem="engine",
    buckets=exponential_buckets(0.1, 2.4, 10),
)

FULL_SYNC_DURATION = Histogram(
    "full_sync_duration_seconds",
    "The duration of full sync in seconds.",
    ["engine"],
    namespace=NAMESPACE,
    subsystem="engine",
    buckets=exponential_buckets(2, 2.9, 10),
)

RULE_SYNC_FAILURES = Counter(
    "rule_sync_failures",
    "The number of rule sync failures.",
    ["engine"],
    namespace=NAMESPACE,
    subsystem="engine",
)

EXTERNAL_REQUEST_DURATION = Histogram(
    "request_duration_seconds",
    "External http request duration seconds",
    ["host", "method", "code"],
    namespace=NAMESPACE,
    subsystem="external",
    buckets=exponential_buckets(0.1, 2.1, 10),
)


def start_metrics_server(port: int) -> None:
    """Expose the default registry over HTTP. A port of 0 disables it."""
    if port:
        start_http_server(port)

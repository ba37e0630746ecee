"""
Prometheus metrics for the stream engine.
Counters live in the global REGISTRY; import this module at app startup.
"""

from prometheus_client import Counter, Histogram

# --- Consumer side ---

STREAM_POLLS_TOTAL = Counter(
    "stream_engine_polls_total",
    "Total number of consumer polls",
    ["group", "outcome"],
)

STREAM_MESSAGES_POLLED_TOTAL = Counter(
    "stream_engine_messages_polled_total",
    "Messages delivered to the row layer by polls",
    ["stream", "origin"],
)

STREAM_CLAIMS_TOTAL = Counter(
    "stream_engine_claims_total",
    "Pending-entry claim attempts",
    ["stream", "outcome"],
)

STREAM_MESSAGES_ACKED_TOTAL = Counter(
    "stream_engine_messages_acked_total",
    "Messages acknowledged to the broker",
    ["stream"],
)

STREAM_POLL_LATENCY_MS = Histogram(
    "stream_engine_poll_latency_ms",
    "Poll latency in milliseconds (claims + group read)",
    ["group"],
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

# --- Producer side ---

STREAM_ENTRIES_APPENDED_TOTAL = Counter(
    "stream_engine_entries_appended_total",
    "Entries appended to streams by writers",
    ["stream", "outcome"],
)


class MetricsRegistry:
    """Centralized access to the engine metrics."""

    polls_total = STREAM_POLLS_TOTAL
    messages_polled_total = STREAM_MESSAGES_POLLED_TOTAL
    claims_total = STREAM_CLAIMS_TOTAL
    messages_acked_total = STREAM_MESSAGES_ACKED_TOTAL
    poll_latency_ms = STREAM_POLL_LATENCY_MS
    entries_appended_total = STREAM_ENTRIES_APPENDED_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()

"""Prometheus metrics for the relay."""
from prometheus_client import Counter, Histogram

STREAMS_STARTED = Counter(
    "relay_streams_started_total",
    "Streaming sessions accepted",
    ["provider"],
)
STREAM_OUTCOMES = Counter(
    "relay_stream_outcomes_total",
    "Streaming sessions by terminal outcome",
    ["provider", "outcome"],
)
GENERATIONS = Counter(
    "relay_generations_total",
    "Buffered generations by outcome",
    ["provider", "outcome"],
)
FIRST_FRAGMENT_SECONDS = Histogram(
    "relay_first_fragment_seconds",
    "Time from stream start to first fragment",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# outcome: success | failure
PARTS = Counter(
    "s3stream_parts_total",
    "Total part uploads by outcome",
    ["outcome"],
)

PART_BYTES = Counter(
    "s3stream_part_bytes_total",
    "Bytes uploaded in successful parts",
)

PART_LATENCY = Histogram(
    "s3stream_part_duration_seconds",
    "Part upload latency in seconds",
)

PARTS_IN_FLIGHT = Gauge(
    "s3stream_parts_in_flight",
    "Part uploads dispatched and not yet resolved",
)

# outcome: completed | aborted | failed
SESSIONS = Counter(
    "s3stream_sessions_total",
    "Upload sessions by terminal state",
    ["outcome"],
)


def serve_metrics(port: int, addr: str = "0.0.0.0") -> None:
    """Expose the default registry on ``/metrics`` from a background thread."""
    start_http_server(port, addr=addr)

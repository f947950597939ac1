from prometheus_client import Counter, Histogram, start_http_server

# Bytes copied from the backend to clients, including streams cut short by a disconnect
FILE_DOWNLOAD_BYTES = Counter(
    "sage_storage_file_download_bytes_total",
    "Total number of file bytes streamed to clients",
)

# Responses by method and status code
REQUESTS_TOTAL = Counter(
    "sage_storage_requests_total",
    "Total number of storage requests handled",
    ["method", "status"],
)

# Latency of backend calls (seconds)
BACKEND_LATENCY = Histogram(
    "sage_storage_backend_latency_seconds",
    "Latency in seconds for object store calls",
    ["operation"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 3.0, 10.0),
)


def start_metrics_server(port: int = 9090) -> None:
    """
    Starts a prometheus_client HTTP server in a background thread to serve metrics.
    Only needed when metrics should be served on a separate port from the app's /metrics.
    """
    start_http_server(port)

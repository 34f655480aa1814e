"""Prometheus metrics: request count by route/status, latency, store outcomes, scan verdicts, storage ops."""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total requests",
    ["method", "path", "status_class"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 30.0, 120.0),
)
STORE_TOTAL = Counter(
    "ingest_store_total",
    "Store attempts",
    ["result", "stage"],  # result: success | failure; stage: where it ended
)
SCAN_VERDICT_TOTAL = Counter(
    "ingest_scan_verdicts_total",
    "Antivirus scan verdicts",
    ["verdict"],  # clean | infected | indeterminate
)
STORAGE_OPS_TOTAL = Counter(
    "ingest_storage_ops_total",
    "Blob store operations",
    ["op", "result"],  # op: put | exists | delete
)


def _status_class(status: int) -> str:
    if status < 200:
        return "1xx"
    if status < 300:
        return "2xx"
    if status < 400:
        return "3xx"
    if status < 500:
        return "4xx"
    return "5xx"


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    path = path or "/"
    sc = _status_class(status_code)
    REQUEST_COUNT.labels(method=method, path=path, status_class=sc).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(latency_seconds)


def record_store_success() -> None:
    STORE_TOTAL.labels(result="success", stage="committed").inc()


def record_store_failure(stage: str) -> None:
    STORE_TOTAL.labels(result="failure", stage=stage).inc()


def record_scan_verdict(verdict: str) -> None:
    SCAN_VERDICT_TOTAL.labels(verdict=verdict).inc()


def record_storage_op(op: str, ok: bool) -> None:
    STORAGE_OPS_TOTAL.labels(op=op, result="ok" if ok else "error").inc()


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST

"""Prometheus metrics definitions for s3parts.

All metrics use the ``s3parts_`` prefix. They are created lazily by
``init_metrics()`` so that importing the library never registers collectors
in the global registry; call sites check for ``None`` before recording.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counter  (labels: operation, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None

# ---------------------------------------------------------------------------
# Upload outcomes  (labels: outcome)
# ---------------------------------------------------------------------------
uploads_total: Counter | None = None

# ---------------------------------------------------------------------------
# Retries and bytes
# ---------------------------------------------------------------------------
part_retries_total: Counter | None = None
bytes_uploaded_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics. Idempotent."""
    global _initialized
    global requests_total, uploads_total, part_retries_total, bytes_uploaded_total

    if _initialized:
        return

    requests_total = Counter(
        "s3parts_requests_total",
        "Total S3 requests by operation and outcome",
        ["operation", "status"],
    )

    uploads_total = Counter(
        "s3parts_uploads_total",
        "Total uploads by final outcome",
        ["outcome"],
    )

    part_retries_total = Counter(
        "s3parts_part_retries_total",
        "Total retried request attempts",
    )

    bytes_uploaded_total = Counter(
        "s3parts_bytes_uploaded_total",
        "Total payload bytes acknowledged by the server",
    )

    _initialized = True


def record_request(operation: str, status: str | int) -> None:
    if requests_total is not None:
        requests_total.labels(operation=operation, status=str(status)).inc()


def record_upload(outcome: str) -> None:
    if uploads_total is not None:
        uploads_total.labels(outcome=outcome).inc()


def record_retry() -> None:
    if part_retries_total is not None:
        part_retries_total.inc()


def record_bytes(nbytes: int) -> None:
    if bytes_uploaded_total is not None:
        bytes_uploaded_total.inc(nbytes)

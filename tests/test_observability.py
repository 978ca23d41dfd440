"""Tests for structured logging and Prometheus metrics."""

import json
import logging

from prometheus_client import REGISTRY

from s3parts import metrics
from s3parts.logging_config import ContextFormatter, JSONFormatter, configure_logging


class TestLogging:
    def test_includes_upload_extras(self):
        record = logging.LogRecord("s3parts.coordinator", logging.INFO, __file__, 1, "done", (), None)
        record.upload_id = "u1"
        record.part_number = 3
        record.duration_ms = 12.5
        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "s3parts.coordinator"
        assert entry["message"] == "done"
        assert entry["upload_id"] == "u1"
        assert entry["part_number"] == 3
        assert entry["duration_ms"] == 12.5
        assert "bucket" not in entry

    def test_text_format_appends_context(self):
        record = logging.LogRecord("s3parts.retry", logging.WARNING, __file__, 1, "retrying", (), None)
        record.part_number = 2
        record.attempt = 1
        line = ContextFormatter().format(record)
        assert line.endswith("s3parts.retry: retrying [part_number=2 attempt=1]")

    def test_text_format_without_context(self):
        record = logging.LogRecord("s3parts", logging.INFO, __file__, 1, "plain", (), None)
        assert ContextFormatter().format(record).endswith("INFO s3parts: plain")

    def test_configure_logging_replaces_handlers(self):
        root = logging.getLogger()
        saved = root.handlers[:], root.level
        try:
            configure_logging(level="DEBUG", fmt="json")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.DEBUG
            configure_logging(level="INFO")
            assert isinstance(root.handlers[0].formatter, ContextFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved[0]
            root.setLevel(saved[1])


class TestMetrics:
    def test_init_is_idempotent_and_records(self):
        metrics.init_metrics()
        metrics.init_metrics()
        before = REGISTRY.get_sample_value(
            "s3parts_requests_total", {"operation": "UploadPart", "status": "200"}
        ) or 0.0
        metrics.record_request("UploadPart", 200)
        after = REGISTRY.get_sample_value(
            "s3parts_requests_total", {"operation": "UploadPart", "status": "200"}
        )
        assert after == before + 1

    def test_bytes_counter(self):
        metrics.init_metrics()
        before = REGISTRY.get_sample_value("s3parts_bytes_uploaded_total") or 0.0
        metrics.record_bytes(1024)
        assert REGISTRY.get_sample_value("s3parts_bytes_uploaded_total") == before + 1024

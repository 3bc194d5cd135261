"""Tests for structured logging."""

import json
import logging

from smart_proxy.config.schema import LoggingConfig
from smart_proxy.logs import JsonFormatter, configure_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("smart_proxy.test", logging.WARNING, __file__, 1, "Retry %d", (2,), None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_includes_extra_fields():
    line = JsonFormatter().format(_record(event="upstream_retry", status=503))
    entry = json.loads(line)

    assert entry["message"] == "Retry 2"
    assert entry["severity"] == "WARNING"
    assert entry["logger"] == "smart_proxy.test"
    assert entry["event"] == "upstream_retry"
    assert entry["status"] == 503
    assert "timestamp" in entry


def test_json_formatter_handles_unserializable_values():
    entry = json.loads(JsonFormatter().format(_record(payload={1, 2})))
    assert isinstance(entry["payload"], str)


def test_configure_logging_to_file(tmp_path):
    log_file = tmp_path / "logs" / "proxy.log"
    logger = configure_logging(LoggingConfig(level="DEBUG", file=str(log_file)))

    logging.getLogger("smart_proxy.server").info("hello", extra={"event": "request_received"})
    for handler in logger.handlers:
        handler.flush()

    entry = json.loads(log_file.read_text().strip().splitlines()[-1])
    assert entry["event"] == "request_received"
    assert entry["logger"] == "smart_proxy.server"

    # Reconfiguring replaces the handler instead of stacking another one
    configure_logging(LoggingConfig(level="INFO", json_format=False))
    assert len(logger.handlers) == 1
    assert not isinstance(logger.handlers[0], logging.FileHandler)

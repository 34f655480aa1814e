"""JSON log lines carry pipeline context fields."""
import json
import logging

from storage_service.core.config import Settings
from storage_service.core.logging_config import JsonLineFormatter, configure_logging


def _record(msg, **extra):
    record = logging.LogRecord("storage_service.services.pipeline", logging.INFO, __file__, 1, msg, (), None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_line_includes_context():
    line = JsonLineFormatter().format(_record("uploaded", tracking_id="t-1", blob_name="a/images/b.png", stage="committed"))
    payload = json.loads(line)
    assert payload["message"] == "uploaded"
    assert payload["level"] == "INFO"
    assert payload["tracking_id"] == "t-1"
    assert payload["blob_name"] == "a/images/b.png"
    assert payload["stage"] == "committed"
    assert "verdict" not in payload


def test_json_line_passes_through_json_messages():
    line = JsonLineFormatter().format(_record('{"event": "request"}'))
    assert line == '{"event": "request"}'


def test_configure_logging_json():
    configure_logging(Settings(log_json=True, debug=True))
    logger = logging.getLogger("storage_service")
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, JsonLineFormatter)
    assert logger.level == logging.DEBUG
    configure_logging(Settings())
    assert not isinstance(logger.handlers[0].formatter, JsonLineFormatter)

"""Logging setup: plain text by default, one JSON object per line when LOG_JSON=1."""
import json
import logging

from storage_service.core.config import Settings

# Context keys the pipeline passes through `extra=`; copied into JSON lines when present
_CONTEXT_KEYS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "latency_ms",
    "tracking_id",
    "blob_name",
    "stage",
    "failed_stage",
    "verdict",
)


class JsonLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        # Request logger already emits a JSON document as its message
        if message.startswith("{"):
            return message
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = str(value) if not isinstance(value, (int, float)) else value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger("storage_service")
    for h in root.handlers[:]:
        root.removeHandler(h)
    h = logging.StreamHandler()
    if settings.log_json:
        h.setFormatter(JsonLineFormatter())
    else:
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)

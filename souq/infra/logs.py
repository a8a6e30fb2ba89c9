import logging
import json
from datetime import datetime, timezone

# extra=... keys surfaced in JSON output when present
_EXTRA_KEYS = (
    "path", "user_id", "product_id", "payment_intent_id",
    "event_id", "event_type", "status_code",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = "INFO", fmt: str = "text"):
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    root = logging.getLogger()
    # uvicorn --reload re-imports the app; avoid stacking handlers
    for h in list(root.handlers):
        if getattr(h, "_souq", False):
            root.removeHandler(h)
    handler._souq = True
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

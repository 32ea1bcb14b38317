"""
Structured logging setup.

JSON lines in production, plain text for local runs. Extra fields passed via
``logger.info(..., extra={...})`` are surfaced when present.
"""

import json
import logging
from datetime import datetime, timezone

EXTRA_FIELDS = (
    "user_id", "caller_id", "request_id", "operation",
    "error_code", "attempt", "path", "deleted",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
    # One ledger handler per process, however many apps start.
    if any(getattr(h, "ledger_handler", False) for h in logging.root.handlers):
        return
    handler = logging.StreamHandler()
    handler.ledger_handler = True
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.root.addHandler(handler)

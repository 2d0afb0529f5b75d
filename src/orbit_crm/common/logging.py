"""JSON-lines logging for OrbitCRM.

Call sites attach request context through ``extra``, for example
``logger.info("settled", extra={"tenant_id": tid, "model": model})``; the
formatter copies the known context keys into the JSON record.
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("tenant_id", "user_id", "contact_id", "model", "tokens")


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send ``orbit_crm.*`` records to stdout as JSON; safe to call twice."""
    package_logger = logging.getLogger("orbit_crm")
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(isinstance(h.formatter, JSONFormatter) for h in package_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        package_logger.addHandler(handler)
    package_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"orbit_crm.{name}")

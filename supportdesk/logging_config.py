"""Logging setup shared by the API, the worker and the scripts.

``LOG_FORMAT=json`` writes one JSON object per line for log shippers;
anything else gives plain text. ``LOG_LEVEL`` picks the threshold.
"""
import json
import logging
import sys
from datetime import datetime, timezone

from .config import Config

TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"

# Request context attached by the access-log middleware via ``extra``
CONTEXT_FIELDS = ("request_id", "method", "path", "status_code", "duration_ms", "user_id")

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "anthropic", "multipart")


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging() -> None:
    level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if Config.LOG_FORMAT.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload imports the app again; replace rather than stack handlers
    root.handlers = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

"""
Structured logging setup.

One stdout handler on the root logger. JSON output uses python-json-logger so
the ``extra={...}`` fields passed by callers become top-level keys.
"""

import logging
import sys
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

from inboxcore.settings import get_settings

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class InboxJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with ISO-8601 UTC timestamps and a level field."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            log_record["ts"] = (
                datetime.fromtimestamp(record.created, tz=timezone.utc)
                .strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
                + "Z"
            )
        log_record["level"] = record.levelname


def setup_logging(level: str | None = None, fmt: str | None = None) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Log level name, defaults to LOG_LEVEL
        fmt: "json" or "text", defaults to LOG_FORMAT

    Returns:
        The configured root logger
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    fmt = (fmt or settings.LOG_FORMAT).lower()

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(InboxJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # Chatty at INFO, every request would be logged twice
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)

    return root

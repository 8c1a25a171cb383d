"""JSON log lines for the booking engine.

Call sites attach structured context as ``extra={"extra_fields": {...}}``.
Those fields sit next to the message in the emitted line; the base keys
(timestamp, level, service, logger, message) cannot be overwritten by them.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

SERVICE_NAME = "campstay"
DEFAULT_LEVEL = logging.INFO


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = dict(getattr(record, "extra_fields", None) or {})
        fields.update(
            timestamp=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            level=record.levelname,
            service=SERVICE_NAME,
            logger=record.name,
            message=record.getMessage(),
        )

        cid = get_correlation_id()
        if cid:
            fields["correlationId"] = cid
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        # Decimal rates and dates end up as strings
        return json.dumps(fields, default=str)


def _configured_level() -> int:
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    if isinstance(level, int):
        return level
    return DEFAULT_LEVEL


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger, attaching the stdout JSON handler on first use."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(JsonFormatter())
    logger.addHandler(stream)
    logger.setLevel(_configured_level())
    logger.propagate = False
    return logger

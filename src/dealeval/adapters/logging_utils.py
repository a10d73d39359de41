# src/dealeval/adapters/logging_utils.py
import json
import logging
import sys
from datetime import datetime, timezone

from .config import config

# Fixed payload keys; context may not overwrite them
_RESERVED = {"ts", "level", "logger", "event"}


class JsonLogFormatter(logging.Formatter):
    """
    One JSON object per line.

    The message is the event name (``market_data_cache_hit``); structured
    fields ride along in ``extra={"context": {...}}`` and are merged at the
    top level without overwriting the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        ctx = getattr(record, "context", None)
        if isinstance(ctx, dict):
            payload.update({k: v for k, v in ctx.items() if k not in _RESERVED})
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        # Decimals, datetimes and enums fall back to str
        return json.dumps(payload, default=str)


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
        logger.setLevel(config.LOG_LEVEL.upper())
        logger.propagate = False
    return logger

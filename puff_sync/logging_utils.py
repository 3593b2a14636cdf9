"""
Structured JSON logging for the sync client and reference server.

One JSON object per line, so logs from a long-running client or
`puff-sync serve` can be piped into any collector.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Chatty libraries capped at WARNING unless debugging
_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.server", "asyncio")


class StructuredJsonFormatter(logging.Formatter):
    """
    Render log records as single-line JSON.

    Fields:
    - timestamp: ISO 8601, UTC
    - level, logger, message
    - component: logger name below the `puff_sync` package, if any
    - exception: formatted traceback when exc_info is set
    - any `extra` fields; values that are not JSON-serializable are stringified
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        prefix, _, component = record.name.partition(".")
        if prefix == "puff_sync" and component:
            entry["component"] = component

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = value if _is_json_safe(value) else str(value)

        return json.dumps(entry)


def _is_json_safe(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Route a logger's output through StructuredJsonFormatter.

    Existing handlers on the logger are replaced.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: root logger)
        stream: Destination (default: stdout)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """
    Tag every record with the account context it was logged under.

    The client uses this to stamp the server URL and data directory,
    so logs from several profiles on one machine can be told apart.
    Per-call `extra` values win over the adapter's context.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

"""JSON logger for deployment runs.

Emits one JSON object per line so CI log viewers and CloudWatch
can filter on stage, stack and account fields.
"""

import json
import logging
import sys
from typing import Any

# LogRecord attributes that are not user-supplied context
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured deployment logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Fields passed through ``extra=`` are merged into the top-level object.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted log string.
        """
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str, level: int | str = logging.INFO) -> logging.Logger:
    """Create a JSON-formatted logger.

    Args:
        name: Logger name (typically __name__).
        level: Logging level (default: INFO).

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.propagate = False

    logger.setLevel(level)
    return logger


def set_level(level: int | str) -> None:
    """Apply a level to every logger created under the ``src`` package."""
    for name in list(logging.root.manager.loggerDict):
        if name == "src" or name.startswith("src."):
            logging.getLogger(name).setLevel(level)

"""
Structured Logging Configuration Module

One JSON object per line for every branch operation. Records carry the
account they concern and, for rejections, the error kind, so a log reader
can follow one account without parsing messages. PINs and PIN hashes must
never be passed to these helpers.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Record attributes copied into the JSON line when present
BANKING_FIELDS = ("account_number", "action", "error_kind", "details")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured branch logs"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in BANKING_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "branch_banking",
                  stream=None) -> logging.Logger:
    """
    Route the branch logger to a JSON stream handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the logger
        stream: Output stream for the handler (stderr when None)
    """
    logger = logging.getLogger(logger_name)

    # Calling twice must not duplicate lines
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "branch_banking") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, account_number: Optional[str] = None,
               error_kind: Optional[str] = None, details: Optional[dict] = None):
    """
    Log a banking action against one account.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error, ...)
        message: Human-readable summary
        action: Operation name, e.g. "withdrawal" or "inactivity_lock"
        account_number: Account the action concerns
        error_kind: ErrorKind value when the action was rejected
        details: Amounts, balances and other non-secret context
    """
    fields = {"action": action, "account_number": account_number,
              "error_kind": error_kind, "details": details or None}
    getattr(logger, level.lower())(
        message, extra={k: v for k, v in fields.items() if v is not None}
    )

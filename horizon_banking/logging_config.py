"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for balance mutations,
authentication and outbox delivery.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


# Attributes log_action() attaches to a record
STRUCTURED_FIELDS = ("user_id", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; unset structured fields are omitted"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "horizon",
                  log_format: str = "json") -> logging.Logger:
    """
    Install a single stream handler on the application logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Root of the application logger tree
        log_format: "json" for structured output, anything else for plain text
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "horizon") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None,
               exc_info=None):
    """Log ``message`` with the structured fields the JSON formatter picks up"""
    values = {"user_id": user_id, "action": action, "resource": resource, "extra": extra}
    fields = {key: value for key, value in values.items() if value}
    logger.log(getattr(logging, level.upper()), message, extra=fields, exc_info=exc_info)

"""Structured logging configuration with operation ID tracking."""

from __future__ import annotations

import json
import logging
import re
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import Settings, settings as default_settings


# Set for the duration of one transfer so every log line it emits can be correlated
operation_id_var: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)

# Passed through ``extra=`` by the transfer service
TRANSFER_FIELDS = ("seller_id", "buyer_id", "company_id", "quantity", "amount")


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def __init__(self, include_location: bool = False):
        super().__init__()
        self.include_location = include_location

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation_id = operation_id_var.get()
        if operation_id:
            log_data["operation_id"] = operation_id

        for name in TRANSFER_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno} in {record.funcName}"

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """One line per record, UTC timestamps, short operation ID prefix."""

    converter = time.gmtime

    def __init__(self):
        super().__init__(
            "%(asctime)s %(levelname)-8s %(operation)s%(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        operation_id = operation_id_var.get()
        record.operation = f"[{operation_id[:8]}] " if operation_id else ""
        return super().format(record)


class SensitiveDataFilter(logging.Filter):
    """Redact account passwords from log messages."""

    PASSWORD_PATTERN = re.compile(
        r"""(["']?password["']?\s*[=:]\s*)[^\s,}\]]+""", re.IGNORECASE
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "password" in message.lower():
            record.msg = self.PASSWORD_PATTERN.sub(r"\1[REDACTED]", message)
            record.args = None
        return True


def setup_logging(config: Settings | None = None) -> None:
    """Configure application logging."""
    config = config or default_settings
    level = getattr(logging, config.log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if config.log_format == "json":
        handler.setFormatter(StructuredFormatter(include_location=config.debug))
    else:
        handler.setFormatter(TextFormatter())

    handler.addFilter(SensitiveDataFilter())

    root_logger.addHandler(handler)

    # SQL echo is controlled by db_echo, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the tradesim prefix."""
    return logging.getLogger(f"tradesim.{name}")

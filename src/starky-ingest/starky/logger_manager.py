"""
Logging setup for starky.

Modules log through ``logging.getLogger(__name__)``; the CLI and MCP server
call ``configure_logging`` once to attach a console handler (and optionally
a file handler) to the ``starky`` logger.

Usage:
    from .logger_manager import configure_logging

    configure_logging(verbose=True, log_format="json")
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

ROOT_LOGGER = "starky"
_EXTRA_FIELDS = ("block_number", "contract_address", "tx_hash", "selector", "error")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for the console."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-24s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


def configure_logging(
    verbose: bool = False,
    log_format: str = "human",
    log_file: Optional[str] = None,
) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)

    # Reconfiguring replaces earlier handlers instead of stacking them.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JSONFormatter() if log_format == "json" else HumanReadableFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        directory = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger

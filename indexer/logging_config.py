"""
Structured logging configuration for the indexer.

JSON logs with a trace_id field; the trace id is the event source name (or
"reconcile") so one range's log lines can be correlated.

Environment Variables:
    INDEXER_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR) - default: INFO
    INDEXER_LOG_FORMAT: Log format (json, text) - default: json

Usage:
    from indexer.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__, trace_id="property_share")
    logger.info("Range committed")
"""

import logging
import os
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure root logger with structured logging.

    Explicit arguments win over INDEXER_LOG_LEVEL / INDEXER_LOG_FORMAT.
    """
    log_level = (level or os.getenv("INDEXER_LOG_LEVEL", "INFO")).upper()
    fmt = (log_format or os.getenv("INDEXER_LOG_FORMAT", "json")).lower()
    resolved = LEVELS.get(log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.addFilter(TraceIDFilter())

    if fmt == "json":
        formatter = JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s",
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s [trace_id=%(trace_id)s]",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Silence noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)


def get_logger(name: str, trace_id: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Get a logger with optional trace_id for correlation.

    Example:
        logger = get_logger(__name__, trace_id="marketplace")
        logger.info("Range committed")
        # {"timestamp": "...", "level": "INFO", "message": "Range committed", "trace_id": "marketplace"}
    """
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, {"trace_id": trace_id or "N/A"})


class TraceIDFilter(logging.Filter):
    """Ensures every record has a trace_id, even if not logged via get_logger()."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trace_id"):
            record.trace_id = "N/A"  # type: ignore
        return True

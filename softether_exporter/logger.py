"""
Structured JSON logging for the exporter.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

ROOT_LOGGER = 'softether_exporter'


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders each record as one JSON object per line.

    Output format:
    {
        "timestamp": "2026-02-08T20:30:00.123456Z",
        "level": "WARNING",
        "logger": "softether_exporter.collectors",
        "message": "Hub status read failed",
        "context": {"hub": "HUB1"}  # Optional extra fields
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        # Add context if present (from logger.warning(..., extra={'context': {...}}))
        if hasattr(record, 'context') and record.context:
            log_data['context'] = record.context

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        # Add source location in debug mode
        if record.levelno <= logging.DEBUG:
            log_data['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_data, default=str)


def _make_formatter(use_json: bool) -> logging.Formatter:
    if use_json:
        return JSONFormatter()
    return logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def setup_logging(level: int = logging.INFO, use_json: bool = True) -> logging.Logger:
    """
    Configure the package logger once at startup.

    Replaces any handler previously installed on the package logger so the
    CLI can switch format and level without duplicating output.

    Args:
        level: Logging level for the package
        use_json: Use JSON formatter (default: True)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(_make_formatter(use_json))
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a logger that inherits the package handler.

    Args:
        name: Logger name (typically __name__)
        level: Optional level override for this logger only

    Returns:
        Logger instance

    Example:
        logger = get_logger(__name__)
        logger.warning("Hub status read failed", extra={'context': {'hub': 'HUB1'}})
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger

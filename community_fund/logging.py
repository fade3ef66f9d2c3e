"""Logging setup for the ``community_fund`` package.

Modules log through ``get_logger(__name__)``. Handlers are attached to the
package logger only, so a host application keeps control of the root logger.
"""
import json
import logging
import sys
from datetime import datetime, timezone

PACKAGE_LOGGER = "community_fund"

STANDARD_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level="INFO", json_format=False, stream=None):
    """Attach a single stream handler to the package logger.

    Calling it again replaces the previous handler.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"WARNING"``.
        json_format: Emit JSON lines instead of the pipe-separated format.
        stream: Output stream, stdout by default.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(STANDARD_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name):
    return logging.getLogger(name)

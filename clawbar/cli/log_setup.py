"""Logging configuration for the clawbar CLI."""

from __future__ import annotations

import logging

from clawbar.config.defaults import DEBUG_LOG

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(debug: bool = False) -> None:
    """Warnings to stderr; with *debug*, everything also goes to the debug log."""
    logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, datefmt=_DATE_FORMAT)
    if not debug:
        return

    clawbar_logger = logging.getLogger("clawbar")
    for handler in clawbar_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(DEBUG_LOG):
            return

    DEBUG_LOG.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(DEBUG_LOG)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
    handler.setLevel(logging.DEBUG)
    clawbar_logger.setLevel(logging.DEBUG)
    clawbar_logger.addHandler(handler)

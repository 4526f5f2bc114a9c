from __future__ import annotations

import logging
import sys
from typing import TextIO

"""Labeled CLI logging.

Each line starts with its label (INFO|WARN|ERROR|SUMMARY, DEBUG with
--debug) followed by the message, no timestamps, so scripts and tests can
match output directly. Modules log through `logging.getLogger(__name__)`;
everything under the `leadgrid` namespace ends up on this one handler.
"""

__all__ = [
    "setup_logging",
    "get_logger",
    "log_summary",
    "reset_logging",
    "LOGGER_NAME",
    "SUMMARY_LEVEL",
]

LOGGER_NAME = "leadgrid"

# INFO(20) と WARNING(30) の間
SUMMARY_LEVEL = 25

_configured: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """`LABEL message` lines."""

    LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        SUMMARY_LEVEL: "SUMMARY",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LABELS.get(record.levelno, record.levelname)
        return f"{label} {record.getMessage()}"


def _apply_level(logger: logging.Logger, debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)
    for h in logger.handlers:
        h.setLevel(level)


def setup_logging(debug: bool = False, stream: TextIO | None = None) -> logging.Logger:
    """Configure the `leadgrid` logger once; later calls only raise verbosity.

    Args:
        debug: Emit DEBUG lines as well
        stream: Output stream, stdout by default (bound at first setup)

    Returns:
        The application logger
    """
    global _configured

    if _configured is not None:
        if debug:
            _apply_level(_configured, True)
        return _configured

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")
    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    _apply_level(logger, debug)
    # root へは流さない (二重出力防止)
    logger.propagate = False

    _configured = logger
    return logger


def get_logger() -> logging.Logger:
    return _configured if _configured is not None else setup_logging()


def log_summary(message: str) -> None:
    """Emit `SUMMARY <message>`."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Forget the configured logger so the next setup rebinds the stream (tests)."""
    global _configured
    _configured = None

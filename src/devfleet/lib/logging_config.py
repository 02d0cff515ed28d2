"""Logging setup for DevFleet commands."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

# Third-party loggers that are too chatty at INFO/DEBUG.
_NOISY_LOGGERS = ("urllib3", "paramiko", "docker")

_ROOT_LOGGER_NAME = "devfleet"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a DevFleet module."""
    return logging.getLogger(name)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the DevFleet logger hierarchy.

    Args:
        verbose: Log at DEBUG level
        quiet: Only log warnings and errors (wins over verbose)
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.setLevel(level)

    # Replace our handler so a re-run binds to the current stderr.
    for existing in [h for h in root.handlers if getattr(h, "_devfleet", False)]:
        root.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler._devfleet = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

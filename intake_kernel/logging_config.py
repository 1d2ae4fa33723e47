"""Logging setup for the Intake Kernel."""

import logging
import sys

_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger. Safe to call twice."""
    global _CONFIGURED

    root = logging.getLogger("intake_kernel")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not _CONFIGURED:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.propagate = False
        _CONFIGURED = True

    return root

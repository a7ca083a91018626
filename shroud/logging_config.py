"""
Logging helpers shared by every shroud module.

Library code only asks for loggers through `get_logger`; nothing is printed
unless the hosting process calls `setup_logging`.
"""
import logging
import sys
from typing import Optional

ROOT_LOGGER = "shroud"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logging.getLogger(ROOT_LOGGER).addHandler(logging.NullHandler())


def get_logger(name: str) -> logging.Logger:
    """Return the `shroud.<name>` logger."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(level: str = "INFO", stream: Optional[object] = None) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    Calling it twice replaces the previous handler instead of stacking a second one.
    """
    root = logging.getLogger(ROOT_LOGGER)
    for h in list(root.handlers):
        if getattr(h, "_shroud_handler", False):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._shroud_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper())
    return root

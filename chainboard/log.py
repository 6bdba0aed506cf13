from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s: %(message)s"

# "off" silences the package entirely
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": logging.CRITICAL + 1,
}


def configure_logging(level: str = "error") -> logging.Logger:
    """Attach a stdout handler to the package logger at ``level``.

    Unknown level names fall back to ``error``.
    """
    logger = logging.getLogger("chainboard")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(LEVELS.get(level.strip().lower(), logging.ERROR))
    return logger

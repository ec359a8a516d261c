"""
LOGGER
======

Named loggers for every component.

Each component asks for its logger by an upper-case name:

    logger = get_logger("KEY_POOL")

Output goes to stderr and to data/logs/<name>.log.
The API_MONITOR logger is the one-line-per-dispatch request journal.
"""

import logging
import os
import sys

from config import LOG_DIR, LOG_LEVEL

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

_configured = set()


def get_logger(name: str) -> logging.Logger:
    """Return the shared logger for a component (handlers attached once)"""
    logger = logging.getLogger(name)

    if name in _configured:
        return logger

    logger.setLevel(getattr(logging, str(LOG_LEVEL).upper(), logging.INFO))
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if LOG_DIR:
        try:
            os.makedirs(LOG_DIR, exist_ok=True)
            file_handler = logging.FileHandler(
                os.path.join(LOG_DIR, f"{name.lower()}.log"), encoding="utf-8"
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"File logging disabled for {name}: {e}")

    _configured.add(name)
    return logger

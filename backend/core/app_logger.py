"""
app_logger.py - Logging setup for the grading backend.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DEFAULT_LEVEL = os.getenv("GRADING_LOG_LEVEL", "INFO").upper()


def setup_logging() -> logging.Logger:
    level = getattr(logging, _DEFAULT_LEVEL, logging.INFO)
    logger = logging.getLogger("grading")
    logger.setLevel(level)

    # Avoid duplicate console handlers on re-import
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        ch.setLevel(level)
        logger.addHandler(ch)

    logger.propagate = False
    return logger


def get_logger(name: str = None) -> logging.Logger:
    base = logging.getLogger("grading")
    return base.getChild(name) if name else base


logger = setup_logging()

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO", *, logger_name: str = "kakeibo") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call more than once: an existing handler is reused and only the
    level is updated.
    """
    logger = logging.getLogger(logger_name)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    if not any(getattr(h, "_kakeibo_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._kakeibo_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = True
    return logger

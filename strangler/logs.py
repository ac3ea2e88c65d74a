"""Logging configuration shared by the gateway and the events service.

Both services log JSON lines to stderr so container log collectors can pick
up structured fields (topic, origin, offset...) without regex parsing.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

ROOT_LOGGER = "strangler"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a JSON handler to the `strangler` logger once.

    `LOG_LEVEL` in the environment wins over the `level` argument.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if logger.handlers:
        return logger

    log_level = getattr(logging, os.environ.get("LOG_LEVEL", level).upper(), logging.INFO)
    logger.setLevel(log_level)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(ROOT_LOGGER)
    if not base.handlers:
        configure_logging()
    if name is None:
        return base
    # Module names already carry the package prefix.
    if name.startswith(ROOT_LOGGER + "."):
        name = name[len(ROOT_LOGGER) + 1 :]
    return base.getChild(name)

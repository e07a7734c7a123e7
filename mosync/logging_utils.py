from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any

from uvicorn.config import LOGGING_CONFIG

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logging.basicConfig(format=LOG_FORMAT, level=level)
    return logger


def configure_logging(verbose: bool = False) -> logging.Logger:
    return get_logger("mosync", logging.DEBUG if verbose else logging.INFO)


def build_uvicorn_log_config(verbose: bool = False) -> dict[str, Any]:
    """Return uvicorn's logging config with the ``mosync`` loggers attached."""
    config = deepcopy(LOGGING_CONFIG)
    config.setdefault("formatters", {})["mosync"] = {"format": LOG_FORMAT}
    config.setdefault("handlers", {})["mosync"] = {
        "formatter": "mosync",
        "class": "logging.StreamHandler",
        "stream": "ext://sys.stderr",
    }
    config.setdefault("loggers", {})["mosync"] = {
        "handlers": ["mosync"],
        "level": "DEBUG" if verbose else "INFO",
        "propagate": False,
    }
    return config

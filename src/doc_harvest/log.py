from __future__ import annotations

import logging
import sys
from pathlib import Path

LOGGER_NAME = "doc_harvest"
_FORMAT = "[ %(asctime)s ] : %(levelname)s : %(name)s : %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(
    level: int | str = logging.INFO, log_file: Path | None = None
) -> logging.Logger:
    """Attach console (and optional file) handlers to the package logger."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Avoid duplicate handlers if called more than once.
    if logger.handlers:
        return logger

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger

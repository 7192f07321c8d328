"""Logging setup for the workflow engine.

Engine modules log through ``logging.getLogger(__name__)``; the handlers
live on the top-level ``backoffice`` logger, installed once by the service
factory. Anything not passed explicitly comes from ``Settings``.
"""

import logging
import logging.handlers
import os
from typing import Optional

from backoffice.core.config import Settings, get_settings

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
ISO_8601 = "%Y-%m-%dT%H:%M:%S"


def setup_logger(
    name: str,
    settings: Optional[Settings] = None,
    *,
    log_dir: Optional[str] = None,
    level: Optional[str] = None,
    file_logging: Optional[bool] = None,
    console_logging: bool = True,
) -> logging.Logger:
    """
    Attach a rotating file handler and a console handler to ``name``.

    Calling it again for the same logger only updates the level.

    Raises:
        ValueError: If the level is not one of LEVELS
    """
    settings = settings or get_settings()
    level = (level or settings.log_level).upper()
    if level not in LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of: {', '.join(LEVELS)}")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level))
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=ISO_8601)

    if settings.log_to_file if file_logging is None else file_logging:
        directory = log_dir or settings.log_dir
        os.makedirs(directory, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(directory, f"{name}.log"),
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger

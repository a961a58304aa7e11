"""Logging configuration for the bridge."""

import logging
import os
import sys
from typing import Optional

LOGGER_NAME = "messages-bridge"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("MSGBRIDGE_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Set up logging with proper handlers and formatters."""
    logger = logging.getLogger(LOGGER_NAME)
    log_level = _resolve_level(level)
    logger.setLevel(log_level)

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Propagate to root so pytest's caplog and uvicorn see our records
    logger.propagate = True

    return logger


# Global logger instance
logger = setup_logging()

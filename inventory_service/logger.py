"""Logger module for logging messages."""

import os

from logging_utils.config import setup_service_logger

logger = setup_service_logger(
    "inventory-service",
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
    serialize=os.getenv("LOG_JSON", "false").lower() == "true",
)

__all__ = ["logger"]

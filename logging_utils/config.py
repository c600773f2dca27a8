"""Logging configuration shared by the inventory service components."""

import sys
from typing import Optional

from loguru import logger as loguru_logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[service]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[service]} | {name}:{function}:{line} - {message}"

_configured: dict[str, Optional[str]] = {}


def setup_service_logger(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    serialize: bool = False,
) -> loguru_logger:
    """Configure the process-wide sinks and return a logger bound to a service.

    Sinks are installed once per (level, file) combination; calling this again
    with the same settings only binds a new service name.

    Args:
        service_name: Name of the service (e.g., 'inventory-service')
        log_level: Logging level (default: INFO)
        log_file: Optional path to a rotating log file
        serialize: Emit JSON records on stderr instead of the colored format

    Returns:
        logger: Configured loguru logger bound with the service name
    """
    settings_key = f"{log_level}|{log_file}|{serialize}"
    if _configured.get("key") != settings_key:
        # Remove any existing handlers
        loguru_logger.remove()
        loguru_logger.configure(extra={"service": service_name})

        loguru_logger.add(
            sys.stderr,
            level=log_level,
            format=CONSOLE_FORMAT,
            colorize=not serialize,
            serialize=serialize,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

        if log_file:
            loguru_logger.add(
                log_file,
                level=log_level,
                format=FILE_FORMAT,
                rotation="10 MB",
                retention="1 week",
                compression="gz",
                enqueue=True,
            )
        _configured["key"] = settings_key

    return loguru_logger.bind(service=service_name)


def get_kafka_logger(service_name: str) -> loguru_logger:
    """Get a logger bound with Kafka context, reusing the installed sinks.

    Args:
        service_name: Name of the service

    Returns:
        logger: Logger whose records carry the `<service>.kafka` name
    """
    return loguru_logger.bind(service=f"{service_name}.kafka")

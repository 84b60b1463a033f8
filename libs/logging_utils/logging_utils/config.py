"""Logging configuration shared by the cashier services."""

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


def setup_service_logger(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    serialize: bool = False,
) -> loguru_logger:
    """Configure the process-wide loguru sinks for a service.

    Call once per process, at import time of the service's ``logger`` module.
    Records that are not bound to a service are tagged with ``service_name``.

    Args:
        service_name: Name of the service (e.g., 'cashier-service')
        log_level: Logging level (default: INFO)
        log_file: Optional path to a rotating log file
        serialize: Emit JSON records on stderr instead of the coloured format

    Returns:
        logger: Logger bound to the service name
    """
    loguru_logger.remove()
    loguru_logger.configure(extra={"service": service_name})

    if serialize:
        loguru_logger.add(sys.stderr, level=log_level, serialize=True, enqueue=True)
    else:
        loguru_logger.add(
            sys.stderr,
            level=log_level,
            format=CONSOLE_FORMAT,
            colorize=True,
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
        )

    return loguru_logger.bind(service=service_name)


def get_component_logger(service_name: str, component: str) -> loguru_logger:
    """Get a logger bound to one component of a service.

    Args:
        service_name: Name of the service
        component: Component tag, e.g. 'kafka' or 'gateway'

    Returns:
        logger: Logger whose records carry ``service`` as ``<service>.<component>``
    """
    return loguru_logger.bind(service=f"{service_name}.{component}")

"""Logging utilities for the cashier services."""

from .config import get_component_logger, setup_service_logger

__all__ = [
    "setup_service_logger",
    "get_component_logger",
]

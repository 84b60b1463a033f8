"""Logger module for the cashier service."""

import os

from logging_utils.config import get_component_logger, setup_service_logger

SERVICE_NAME = "cashier-service"

logger = setup_service_logger(
    SERVICE_NAME,
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE"),
    serialize=os.getenv("LOG_JSON", "false").lower() == "true",
)

# Records from the Kafka consumer/producer and the topic router
kafka_logger = get_component_logger(SERVICE_NAME, "kafka")

__all__ = ["logger", "kafka_logger"]

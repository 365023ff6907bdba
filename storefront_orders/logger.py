"""Logger module for the storefront order service."""

import os

from logging_utils import setup_service_logger

logger = setup_service_logger(
    "storefront-orders",
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
    json_logs=os.getenv("LOG_JSON", "false").lower() == "true",
)

__all__ = ["logger"]

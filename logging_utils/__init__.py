"""Logging utilities shared by the storefront services."""

from .config import setup_service_logger

__all__ = [
    "setup_service_logger",
]

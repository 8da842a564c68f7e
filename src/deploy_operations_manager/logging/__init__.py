"""Logging configuration for deploy_operations_manager."""

from deploy_operations_manager.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]

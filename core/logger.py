#!/usr/bin/env python3
"""
Service Logger Setup

Configures the root logging handlers once per process and returns the
service's named logger.

Usage:
    from core.logger import setup_service_logger

    logger = setup_service_logger("membership_service", level="INFO")
"""

import logging
import sys
from typing import Optional

from .config import LoggingConfig

_configured = False


def setup_service_logger(service_name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Configure logging for a service process.

    Args:
        service_name: Name of the service (used as logger name)
        level: Log level name; defaults to LOG_LEVEL from the environment

    Returns:
        Logger named after the service
    """
    global _configured

    config = LoggingConfig.from_env()
    level_name = (level or config.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    if not _configured:
        formatter = logging.Formatter(config.log_format)
        root = logging.getLogger()
        root.setLevel(log_level)

        if config.enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            root.addHandler(console)

        if config.log_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        for name in config.quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)
        _configured = True

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)
    return logger


__all__ = ["setup_service_logger"]

#!/usr/bin/env python3
"""
Shared infrastructure for the membership service

    - config/: environment-backed dataclasses (infrastructure, logging)
    - config_manager.py: service, database and NATS settings
    - logger.py: process-wide logging setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: JetStream event bus
"""

from .config_manager import ConfigManager, DatabaseConfig, Environment, ServiceConfig

__all__ = [
    "ConfigManager",
    "DatabaseConfig",
    "Environment",
    "ServiceConfig",
]

#!/usr/bin/env python3
"""Environment-backed configuration

- infra_config: PostgreSQL, NATS and invoicing endpoints
- logging_config: log level, format and sinks

MEMBERSHIP_ENV_FILE points at an explicit .env file; otherwise the file for the
current ENV under deployment/ is loaded when present. Variables already set in
the process environment always win.
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig

_env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
_env_file = os.getenv("MEMBERSHIP_ENV_FILE") or f"deployment/membership/{_env}.env"
if os.path.exists(_env_file):
    load_dotenv(_env_file, override=False)

__all__ = [
    'LoggingConfig',
    'InfraConfig',
]

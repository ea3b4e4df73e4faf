#!/usr/bin/env python3
"""Logging settings read from the environment"""
import os
from dataclasses import dataclass, field
from typing import List

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class LoggingConfig:
    log_level: str = "INFO"
    log_format: str = DEFAULT_FORMAT
    log_file: str = ""
    enable_console: bool = True
    # Client libraries that chatter at INFO during pool/connection churn
    quiet_loggers: List[str] = field(default_factory=lambda: ["asyncpg", "httpx", "nats"])

    @classmethod
    def from_env(cls) -> 'LoggingConfig':
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        quiet = os.getenv("LOG_QUIET_LOGGERS")
        return cls(
            log_level=os.getenv("LOG_LEVEL", "DEBUG" if env == "development" else "INFO"),
            log_format=os.getenv("LOG_FORMAT", DEFAULT_FORMAT),
            log_file=os.getenv("LOG_FILE", ""),
            enable_console=os.getenv("LOG_CONSOLE", "true").lower() == "true",
            quiet_loggers=[n.strip() for n in quiet.split(",") if n.strip()] if quiet else cls().quiet_loggers,
        )

#!/usr/bin/env python3
"""
Centralized Configuration Manager

Loads per-service configuration from environment variables (optionally seeded
from a deployment .env file) and resolves infrastructure endpoints.

Usage:
    from core.config_manager import ConfigManager

    config_manager = ConfigManager("membership_service")
    config = config_manager.get_service_config()

    host, port = config_manager.discover_service(
        service_name="postgres_service",
        default_host="localhost",
        default_port=5432,
        env_host_key="POSTGRES_HOST",
        env_port_key="POSTGRES_PORT",
    )
"""

import logging
import os
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .config import InfraConfig, LoggingConfig

logger = logging.getLogger(__name__)


def _bool(val: str) -> bool:
    return val.lower() == "true"


def _int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


class Environment(str, Enum):
    """Deployment environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_env(cls) -> "Environment":
        raw = (os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")).lower()
        aliases = {"dev": "development", "test": "testing", "prod": "production"}
        raw = aliases.get(raw, raw)
        try:
            return cls(raw)
        except ValueError:
            return cls.DEVELOPMENT


@dataclass
class ServiceConfig:
    """Runtime configuration of one microservice"""
    service_name: str
    service_host: str = "0.0.0.0"
    service_port: int = 8250
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: str = "INFO"

    # Calendar dates are always computed in the business's local timezone
    business_timezone: str = "Asia/Riyadh"
    default_currency: str = "SAR"

    # Collaborators
    invoice_service_url: str = "http://localhost:8216"
    invoice_timeout_seconds: int = 10
    nats_enabled: bool = True


@dataclass
class DatabaseConfig:
    """PostgreSQL connection settings"""
    host: str = "localhost"
    port: int = 5432
    database: str = "postgres"
    user: str = "postgres"
    password: str = "postgres"
    schema: str = "membership"
    min_pool_size: int = 2
    max_pool_size: int = 10

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class NatsConfig:
    """NATS connection settings"""
    enabled: bool = True
    servers: str = "nats://localhost:4222"


class ConfigManager:
    """Per-service configuration manager"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.environment = Environment.from_env()
        self.infra = InfraConfig.from_env()
        self.logging = LoggingConfig.from_env()
        self._service_config: Optional[ServiceConfig] = None

    def get(self, key: str, default: Any = None) -> Any:
        """Read a raw configuration value"""
        return os.getenv(key, default)

    def get_service_config(self) -> ServiceConfig:
        """Build (once) the service configuration"""
        if self._service_config is None:
            prefix = self.service_name.upper()
            self._service_config = ServiceConfig(
                service_name=self.service_name,
                service_host=os.getenv(f"{prefix}_HOST", os.getenv("SERVICE_HOST", "0.0.0.0")),
                service_port=_int(os.getenv(f"{prefix}_PORT") or os.getenv("SERVICE_PORT"), 8250),
                environment=self.environment,
                debug=_bool(os.getenv("DEBUG", "false")),
                log_level=self.logging.log_level,
                business_timezone=os.getenv("BUSINESS_TIMEZONE", "Asia/Riyadh"),
                default_currency=os.getenv("DEFAULT_CURRENCY", "SAR"),
                invoice_service_url=os.getenv("INVOICE_SERVICE_URL", self.infra.invoice_url),
                invoice_timeout_seconds=self.infra.invoice_timeout_seconds,
                nats_enabled=self.infra.nats_enabled,
            )
        return self._service_config

    def get_database_config(self) -> DatabaseConfig:
        host, port = self.discover_service(
            service_name="postgres_service",
            default_host=self.infra.postgres_host,
            default_port=self.infra.postgres_port,
            env_host_key="POSTGRES_HOST",
            env_port_key="POSTGRES_PORT",
        )
        return DatabaseConfig(
            host=host,
            port=port,
            database=self.infra.postgres_db,
            user=self.infra.postgres_user,
            password=self.infra.postgres_password,
            schema=self.infra.membership_schema,
            min_pool_size=self.infra.postgres_min_pool_size,
            max_pool_size=self.infra.postgres_max_pool_size,
        )

    def get_nats_config(self) -> NatsConfig:
        return NatsConfig(enabled=self.infra.nats_enabled, servers=self.infra.nats_servers)

    def discover_service(
        self,
        service_name: str,
        default_host: str,
        default_port: int,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host/port of an infrastructure service.

        Priority: explicit environment variables, then defaults.
        """
        host = os.getenv(env_host_key) if env_host_key else None
        port = _int(os.getenv(env_port_key), default_port) if env_port_key else default_port
        resolved = (host or default_host, port)
        logger.debug(f"Resolved {service_name} -> {resolved[0]}:{resolved[1]}")
        return resolved

    def print_config_summary(self, show_secrets: bool = False) -> None:
        """Log the effective configuration (development aid)"""
        summary: Dict[str, Any] = asdict(self.get_service_config())
        db = asdict(self.get_database_config())
        if not show_secrets:
            db["password"] = "***"
        summary["database"] = db
        summary["nats_url"] = self.infra.nats_url
        for key, value in summary.items():
            logger.info(f"[{self.service_name}] {key} = {value}")


__all__ = [
    "ConfigManager",
    "Environment",
    "ServiceConfig",
    "DatabaseConfig",
    "NatsConfig",
]

#!/usr/bin/env python3
"""Infrastructure endpoints used by the membership deployment

PostgreSQL holds contracts and subscriptions, NATS carries lifecycle events,
and the invoicing service receives charge/credit requests.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _bool(val: str) -> bool:
    return val.strip().lower() in ("1", "true", "yes")


def _int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class InfraConfig:
    """Endpoints and pool sizing for external infrastructure"""

    # ===========================================
    # PostgreSQL (asyncpg pool)
    # ===========================================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "gym"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_min_pool_size: int = 2
    postgres_max_pool_size: int = 10
    membership_schema: str = "membership"

    # ===========================================
    # NATS JetStream
    # ===========================================
    nats_enabled: bool = True
    nats_host: str = "localhost"
    nats_port: int = 4222
    nats_url: Optional[str] = None

    # ===========================================
    # Invoicing collaborator
    # ===========================================
    invoice_host: str = "localhost"
    invoice_port: int = 8216
    invoice_timeout_seconds: int = 10

    @property
    def nats_servers(self) -> str:
        return self.nats_url or f"nats://{self.nats_host}:{self.nats_port}"

    @property
    def invoice_url(self) -> str:
        return f"http://{self.invoice_host}:{self.invoice_port}"

    @classmethod
    def from_env(cls) -> 'InfraConfig':
        return cls(
            postgres_host=os.getenv("POSTGRES_HOST", "localhost"),
            postgres_port=_int(os.getenv("POSTGRES_PORT"), 5432),
            postgres_db=os.getenv("POSTGRES_DB", "gym"),
            postgres_user=os.getenv("POSTGRES_USER", "postgres"),
            postgres_password=os.getenv("POSTGRES_PASSWORD", "postgres"),
            postgres_min_pool_size=_int(os.getenv("POSTGRES_MIN_POOL_SIZE"), 2),
            postgres_max_pool_size=_int(os.getenv("POSTGRES_MAX_POOL_SIZE"), 10),
            membership_schema=os.getenv("MEMBERSHIP_DB_SCHEMA", "membership"),
            nats_enabled=_bool(os.getenv("NATS_ENABLED", "true")),
            nats_host=os.getenv("NATS_HOST", "localhost"),
            nats_port=_int(os.getenv("NATS_PORT"), 4222),
            nats_url=os.getenv("NATS_URL"),
            invoice_host=os.getenv("INVOICE_SERVICE_HOST", "localhost"),
            invoice_port=_int(os.getenv("INVOICE_SERVICE_PORT"), 8216),
            invoice_timeout_seconds=_int(os.getenv("INVOICE_SERVICE_TIMEOUT"), 10),
        )

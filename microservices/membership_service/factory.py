"""
Membership Service Factory

Factory for creating MembershipService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config_manager import ConfigManager

from .clients.invoice_client import InvoiceServiceClient
from .membership_repository import MembershipRepository
from .membership_service import MembershipService
from .policy import MembershipPolicy

logger = logging.getLogger(__name__)


def create_membership_service(
    config: Optional[ConfigManager] = None,
    event_bus=None,
    invoice_client=None,
    policy: Optional[MembershipPolicy] = None,
) -> MembershipService:
    """
    Create MembershipService with all real dependencies

    Args:
        config: Optional config manager (creates default if not provided)
        event_bus: Optional event bus for event publishing
        invoice_client: Optional invoicing client (HTTP client built from config if not provided)
        policy: Optional business policy (loaded from environment if not provided)

    Returns:
        MembershipService instance (call initialize() before use)
    """
    # Initialize config if not provided
    if config is None:
        config = ConfigManager("membership_service")
    service_config = config.get_service_config()

    # Create repository
    repository = MembershipRepository(config=config)

    if invoice_client is None:
        invoice_client = InvoiceServiceClient(
            base_url=service_config.invoice_service_url,
            timeout=service_config.invoice_timeout_seconds,
        )

    logger.info(
        f"MembershipService created with real dependencies "
        f"(timezone={service_config.business_timezone})"
    )

    # Create and return service
    return MembershipService(
        repository=repository,
        event_bus=event_bus,
        invoice_client=invoice_client,
        policy=policy or MembershipPolicy.from_env(),
        business_timezone=service_config.business_timezone,
    )


__all__ = ["create_membership_service"]

"""
Component Test Mocks

Mock implementations for component testing.
These mocks replace real I/O dependencies (database, NATS, invoicing).
"""

from .membership_repository_mock import InMemoryMembershipRepository
from .nats_mock import MockEventBus
from .invoice_mock import MockInvoiceClient

__all__ = [
    'InMemoryMembershipRepository',
    'MockEventBus',
    'MockInvoiceClient',
]

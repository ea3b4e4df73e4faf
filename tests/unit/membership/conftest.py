"""
Unit Test Fixtures for Membership Service

A MembershipService wired to the in-memory repository, a recording event bus,
a recording invoice client and a pinned business clock.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.membership_service.membership_service import MembershipService
from microservices.membership_service.models import CreateContractRequest
from microservices.membership_service.policy import MembershipPolicy
from tests.component.mocks import InMemoryMembershipRepository, MockEventBus, MockInvoiceClient
from tests.fixtures import ALL_PLANS, BASIC, PinnedClock


@pytest.fixture
def clock():
    """Business date pinned to 2026-01-01"""
    return PinnedClock()


@pytest.fixture
def mock_repository():
    return InMemoryMembershipRepository(plans=ALL_PLANS)


@pytest.fixture
def event_bus():
    return MockEventBus()


@pytest.fixture
def invoice_client():
    return MockInvoiceClient()


@pytest.fixture
def policy():
    return MembershipPolicy()


@pytest.fixture
def membership_service(mock_repository, event_bus, invoice_client, policy, clock):
    """Service under test"""
    return MembershipService(
        repository=mock_repository,
        event_bus=event_bus,
        invoice_client=invoice_client,
        policy=policy,
        clock=clock,
    )


@pytest.fixture
def enroll(membership_service):
    """Create a contract (signed unless sign=False) and return the enrollment"""

    async def _enroll(member_id: str, plan_id: str = BASIC.plan_id, sign: bool = True, **kwargs):
        enrollment = await membership_service.create_contract(
            CreateContractRequest(member_id=member_id, plan_id=plan_id, **kwargs)
        )
        if sign:
            contract = await membership_service.sign_contract(enrollment.contract.contract_id, "sig-blob")
            enrollment = enrollment.model_copy(update={"contract": contract})
        return enrollment

    return _enroll

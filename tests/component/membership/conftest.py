"""
Component Test Fixtures for Membership Service

Provides fixtures for component testing with FastAPI TestClient. The app's
global service is replaced by one wired to the in-memory repository and a
pinned business clock.
"""

import os
import sys
from unittest.mock import patch

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from tests.component.mocks import InMemoryMembershipRepository
from tests.fixtures import ALL_PLANS, BASIC, PinnedClock, make_contract_request

API = "/api/v1/memberships"


@pytest.fixture
def clock():
    return PinnedClock()


@pytest.fixture
def mock_repository():
    """Fresh in-memory repository seeded with the plan catalogue"""
    return InMemoryMembershipRepository(plans=ALL_PLANS)


@pytest.fixture
def service(mock_repository, mock_event_bus, mock_invoice_client, clock):
    from microservices.membership_service.membership_service import MembershipService

    return MembershipService(
        repository=mock_repository,
        event_bus=mock_event_bus,
        invoice_client=mock_invoice_client,
        clock=clock,
    )


@pytest.fixture
def client(service):
    """Create FastAPI test client with mocked dependencies"""
    from fastapi.testclient import TestClient

    # Patch the globals in main module
    with patch("microservices.membership_service.main.membership_service", service), \
         patch("microservices.membership_service.main.event_bus", None):

        from microservices.membership_service.main import app

        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client


@pytest.fixture
def enrolled(client):
    """Enroll and sign; returns a function giving the enrollment body"""

    def _enrolled(member_id: str = "mbr_1", plan_id: str = BASIC.plan_id, sign: bool = True, **overrides):
        response = client.post(f"{API}/contracts", json=make_contract_request(member_id, plan_id, **overrides))
        assert response.status_code == 201, response.text
        body = response.json()
        if sign:
            signed = client.post(
                f"{API}/contracts/{body['contract']['contract_id']}/sign", json={"signature": "sig-blob"}
            )
            assert signed.status_code == 200, signed.text
            body["contract"] = signed.json()
        return body

    return _enrolled

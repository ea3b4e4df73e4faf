"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── membership/  FastAPI app over the in-memory repository
    └── mocks/       Mock implementations

Usage:
    pytest tests/component -v
    pytest tests/component/membership -v
"""
import os
import sys
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ["NATS_ENABLED"] = "false"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

# Load test environment variables
project_root = Path(__file__).parent.parent.parent
test_env_file = project_root / "tests" / "config" / ".env.test"
if test_env_file.exists():
    load_dotenv(test_env_file, override=True)

from tests.component.mocks import MockEventBus, MockInvoiceClient


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )


# =============================================================================
# Event Bus Mocks
# =============================================================================

@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Mock NATS event bus"""
    return MockEventBus()


# =============================================================================
# Service Client Mocks
# =============================================================================

@pytest.fixture
def mock_invoice_client() -> MockInvoiceClient:
    """Mock invoicing collaborator"""
    return MockInvoiceClient()

"""
Root conftest.py - global configuration for the membership test suite.

Test Layers:
    - unit/       : service workflows over the in-memory repository, no I/O
    - component/  : FastAPI surface through TestClient

Every test is marked with its layer automatically, so `pytest -m unit`
and `pytest -m component` select a layer without per-file markers.
"""
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

# Never reach for a broker or database from the test suite
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("BUSINESS_TIMEZONE", "Asia/Riyadh")

LAYERS = ("unit", "component")


def pytest_configure(config):
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")


def pytest_collection_modifyitems(config, items):
    """Mark each test with the layer directory it lives in"""
    for item in items:
        parts = item.nodeid.split("/")
        for layer in LAYERS:
            if layer in parts[:2]:
                item.add_marker(getattr(pytest.mark, layer))

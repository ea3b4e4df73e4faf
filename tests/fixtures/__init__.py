"""
Shared Test Fixtures

    - common.py: member id generator
    - membership_fixtures.py: plan catalogue, business clock, request factories
"""

from .common import make_member_id
from .membership_fixtures import (
    ALL_PLANS,
    BASIC,
    COMMITMENT,
    JAN_1,
    PREMIUM,
    RETIRED,
    TRIAL,
    PinnedClock,
    make_contract_request,
    make_exit_survey_request,
    sar,
)

__all__ = [
    "make_member_id",
    "ALL_PLANS",
    "BASIC",
    "COMMITMENT",
    "JAN_1",
    "PREMIUM",
    "RETIRED",
    "TRIAL",
    "PinnedClock",
    "make_contract_request",
    "make_exit_survey_request",
    "sar",
]

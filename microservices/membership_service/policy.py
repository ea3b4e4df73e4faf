"""
Membership Business Policy

Jurisdiction and commercial defaults for contracts, freezes and retention
offers. Loaded from environment variables with the same dataclass pattern as
core.config.
"""

import os
from dataclasses import dataclass
from decimal import Decimal

from .models import COOLING_OFF_HARD_CAP_DAYS


def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


def _decimal(val: str, default: str) -> Decimal:
    return Decimal(val) if val else Decimal(default)


@dataclass(frozen=True)
class MembershipPolicy:
    """Business rules that vary by jurisdiction or commercial decision"""

    # Contracts
    cooling_off_days: int = 7
    cooling_off_hard_cap_days: int = COOLING_OFF_HARD_CAP_DAYS
    notice_period_days: int = 30

    # Freezes
    max_open_freeze_days: int = 90

    # Retention offers
    offer_expiry_hours: int = 72
    loyalty_discount_min_tenure_days: int = 90
    loyalty_discount_percentage: Decimal = Decimal("25")
    loyalty_discount_months: int = 3
    pause_offer_days: int = 30
    free_months_offer: int = 1
    financial_free_months_offer: int = 2

    # Cancellation aftermath
    reactivation_window_days: int = 90

    def __post_init__(self):
        if self.cooling_off_days > self.cooling_off_hard_cap_days:
            raise ValueError(
                f"cooling_off_days ({self.cooling_off_days}) exceeds hard cap ({self.cooling_off_hard_cap_days})"
            )

    @classmethod
    def from_env(cls) -> "MembershipPolicy":
        """Load policy overrides from environment variables"""
        return cls(
            cooling_off_days=_int(os.getenv("MEMBERSHIP_COOLING_OFF_DAYS", ""), 7),
            notice_period_days=_int(os.getenv("MEMBERSHIP_NOTICE_PERIOD_DAYS", ""), 30),
            max_open_freeze_days=_int(os.getenv("MEMBERSHIP_MAX_OPEN_FREEZE_DAYS", ""), 90),
            offer_expiry_hours=_int(os.getenv("MEMBERSHIP_OFFER_EXPIRY_HOURS", ""), 72),
            loyalty_discount_min_tenure_days=_int(os.getenv("MEMBERSHIP_LOYALTY_MIN_TENURE_DAYS", ""), 90),
            loyalty_discount_percentage=_decimal(os.getenv("MEMBERSHIP_LOYALTY_DISCOUNT_PCT", ""), "25"),
            loyalty_discount_months=_int(os.getenv("MEMBERSHIP_LOYALTY_DISCOUNT_MONTHS", ""), 3),
            pause_offer_days=_int(os.getenv("MEMBERSHIP_PAUSE_OFFER_DAYS", ""), 30),
            free_months_offer=_int(os.getenv("MEMBERSHIP_FREE_MONTHS_OFFER", ""), 1),
            financial_free_months_offer=_int(os.getenv("MEMBERSHIP_FINANCIAL_FREE_MONTHS_OFFER", ""), 2),
            reactivation_window_days=_int(os.getenv("MEMBERSHIP_REACTIVATION_WINDOW_DAYS", ""), 90),
        )


__all__ = ["MembershipPolicy"]

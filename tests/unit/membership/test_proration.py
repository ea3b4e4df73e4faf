"""
Unit Tests for Money Arithmetic and Plan-Change Proration

Pure functions, no service or repository involved.
"""

from datetime import date
from decimal import Decimal

import pytest

from microservices.membership_service.models import PlanChangeType, ProrationMode
from microservices.membership_service.money import (
    Money,
    add_months,
    inclusive_days,
    percentage_of,
    period_end_for,
    whole_months_between,
)
from microservices.membership_service.proration import (
    calculate_proration,
    classify_change,
    default_proration_mode,
    deferred_proration,
)
from microservices.membership_service.protocols import ValidationError


class TestMoney:
    """Tests for Money"""

    def test_of_rounds_half_up_to_currency_precision(self):
        assert Money.of("10.005", "SAR").amount == Decimal("10.01")
        assert Money.of("10.004", "SAR").amount == Decimal("10.00")

    def test_zero_decimal_currency(self):
        assert Money.of("1500.6", "JPY").amount == Decimal("1501")

    def test_three_decimal_currency(self):
        assert Money.of("12.3456", "KWD").amount == Decimal("12.346")

    def test_currency_is_uppercased(self):
        assert Money.of(1, "sar").currency == "SAR"

    def test_currency_mismatch_rejected(self):
        with pytest.raises(ValueError):
            Money.of(1, "SAR") + Money.of(1, "USD")

    def test_percentage_of_with_multiplier(self):
        assert percentage_of(Money.of(200, "SAR"), 10, 5) == Money.of("100.00", "SAR")

    def test_sign_properties(self):
        assert Money.of(-1, "SAR").is_negative
        assert Money.of(1, "SAR").is_positive
        assert Money.zero("SAR").is_zero


class TestCalendar:
    """Tests for calendar helpers"""

    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)

    def test_period_end_is_inclusive(self):
        assert period_end_for(date(2026, 1, 1), 1) == date(2026, 1, 31)
        assert period_end_for(date(2026, 1, 1), 12) == date(2026, 12, 31)

    def test_whole_months_between(self):
        assert whole_months_between(date(2026, 8, 1), date(2027, 1, 1)) == 5
        assert whole_months_between(date(2026, 8, 15), date(2027, 1, 1)) == 4
        assert whole_months_between(date(2027, 1, 1), date(2026, 8, 1)) == 0

    def test_inclusive_days(self):
        assert inclusive_days(date(2026, 1, 1), date(2026, 1, 31)) == 31


class TestClassification:
    """Tests for change classification and default modes"""

    @pytest.mark.parametrize("old,new,expected", [
        (300, 450, PlanChangeType.UPGRADE),
        (450, 300, PlanChangeType.DOWNGRADE),
        (300, 300, PlanChangeType.LATERAL),
    ])
    def test_classify_change(self, old, new, expected):
        assert classify_change(Money.of(old, "SAR"), Money.of(new, "SAR")) == expected

    def test_only_downgrades_default_to_end_of_period(self):
        assert default_proration_mode(PlanChangeType.DOWNGRADE) == ProrationMode.END_OF_PERIOD
        assert default_proration_mode(PlanChangeType.UPGRADE) == ProrationMode.IMMEDIATE
        assert default_proration_mode(PlanChangeType.LATERAL) == ProrationMode.IMMEDIATE


class TestCalculateProration:
    """Tests for immediate-mode proration"""

    def test_upgrade_mid_january(self):
        breakdown = calculate_proration(
            Money.of(300, "SAR"), Money.of(450, "SAR"),
            date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 11),
        )

        assert breakdown.period_length_days == 31
        assert breakdown.days_remaining == 20
        assert breakdown.credit_amount.amount == Decimal("193.55")
        assert breakdown.charge_amount.amount == Decimal("290.32")
        assert breakdown.net_amount.amount == Decimal("96.77")

    def test_immediate_downgrade_owes_credit(self):
        breakdown = calculate_proration(
            Money.of(450, "SAR"), Money.of(300, "SAR"),
            date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 11),
        )

        assert breakdown.net_amount.amount == Decimal("-96.77")

    def test_change_on_last_day_is_free(self):
        breakdown = calculate_proration(
            Money.of(300, "SAR"), Money.of(450, "SAR"),
            date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 31),
        )

        assert breakdown.days_remaining == 0
        assert breakdown.net_amount.is_zero

    def test_change_outside_period_rejected(self):
        with pytest.raises(ValidationError):
            calculate_proration(
                Money.of(300, "SAR"), Money.of(450, "SAR"),
                date(2026, 1, 1), date(2026, 1, 31), date(2026, 2, 1),
            )

    def test_empty_period_rejected(self):
        with pytest.raises(ValidationError):
            calculate_proration(
                Money.of(300, "SAR"), Money.of(450, "SAR"),
                date(2026, 1, 31), date(2026, 1, 1), date(2026, 1, 11),
            )

    def test_cross_currency_rejected(self):
        with pytest.raises(ValidationError):
            calculate_proration(
                Money.of(300, "SAR"), Money.of(450, "USD"),
                date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 11),
            )

    def test_deferred_proration_is_zero(self):
        breakdown = deferred_proration("SAR", date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 11))

        assert breakdown.net_amount.is_zero
        assert breakdown.credit_amount.is_zero
        assert breakdown.days_remaining == 20

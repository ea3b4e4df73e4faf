"""
Plan-Change Proration

Pure calculations: change classification and pro-rata credit/charge for a
mid-period plan switch. Period length always comes from the subscription's
current period boundaries.

Worked example (31-day period Jan 1..Jan 31, change on Jan 11):
    days_remaining = Jan 31 - Jan 11 = 20
    credit = 300 / 31 * 20 = 193.55
    charge = 450 / 31 * 20 = 290.32
    net    = 290.32 - 193.55 = 96.77
"""

from datetime import date

from pydantic import BaseModel

from .models import PlanChangeType, ProrationMode
from .money import Money, days_between, inclusive_days
from .protocols import ValidationError


class ProrationBreakdown(BaseModel):
    period_length_days: int
    days_remaining: int
    credit_amount: Money
    charge_amount: Money
    net_amount: Money


def classify_change(current_price: Money, new_price: Money) -> PlanChangeType:
    cmp = new_price.compare(current_price)
    if cmp > 0:
        return PlanChangeType.UPGRADE
    if cmp < 0:
        return PlanChangeType.DOWNGRADE
    return PlanChangeType.LATERAL


def default_proration_mode(change_type: PlanChangeType) -> ProrationMode:
    if change_type == PlanChangeType.DOWNGRADE:
        return ProrationMode.END_OF_PERIOD
    return ProrationMode.IMMEDIATE


def calculate_proration(
    old_price: Money,
    new_price: Money,
    period_start: date,
    period_end: date,
    change_date: date,
) -> ProrationBreakdown:
    """Immediate-mode proration; net is negative when a credit is owed"""
    if old_price.currency != new_price.currency:
        raise ValidationError(f"Cannot prorate across currencies ({old_price.currency} -> {new_price.currency})")
    if period_end <= period_start:
        raise ValidationError(f"Billing period {period_start}..{period_end} has no length")
    if change_date < period_start or change_date > period_end:
        raise ValidationError(f"Change date {change_date} is outside the period {period_start}..{period_end}")

    length = inclusive_days(period_start, period_end)
    remaining = days_between(change_date, period_end)

    credit = Money.of(old_price.amount * remaining / length, old_price.currency)
    charge = Money.of(new_price.amount * remaining / length, new_price.currency)

    return ProrationBreakdown(
        period_length_days=length,
        days_remaining=remaining,
        credit_amount=credit,
        charge_amount=charge,
        net_amount=charge - credit,
    )


def deferred_proration(currency: str, period_start: date, period_end: date, change_date: date) -> ProrationBreakdown:
    """End-of-period mode: nothing is charged or credited now"""
    if period_end <= period_start:
        raise ValidationError(f"Billing period {period_start}..{period_end} has no length")
    zero = Money.zero(currency)
    return ProrationBreakdown(
        period_length_days=inclusive_days(period_start, period_end),
        days_remaining=max(days_between(change_date, period_end), 0),
        credit_amount=zero,
        charge_amount=zero,
        net_amount=zero,
    )


__all__ = [
    "ProrationBreakdown",
    "classify_change",
    "default_proration_mode",
    "calculate_proration",
    "deferred_proration",
]

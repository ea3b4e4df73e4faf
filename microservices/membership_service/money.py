"""
Membership Service Money & Date Utilities

Exact decimal money arithmetic and calendar helpers used by the contract,
subscription, proration and cancellation components.

All amounts are Decimal; rounding to currency precision happens once, at the
point a figure becomes a money value (HALF_UP). All dates are calendar dates
in the business's local timezone.
"""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Union
from zoneinfo import ZoneInfo

from babel.numbers import get_currency_precision
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator

NumberLike = Union[Decimal, int, str]


# ====================
# Money
# ====================

@lru_cache(maxsize=64)
def currency_precision(currency: str) -> int:
    """Number of minor-unit digits for an ISO 4217 currency"""
    return get_currency_precision(currency.upper())


def round_to_currency(amount: Decimal, currency: str) -> Decimal:
    """Round an amount to the currency's precision (half-up)"""
    exponent = Decimal(1).scaleb(-currency_precision(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


class Money(BaseModel):
    """Currency-tagged decimal amount"""
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str = Field(..., min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def of(cls, amount: NumberLike, currency: str) -> "Money":
        """Build a money value rounded to the currency's precision"""
        return cls(amount=round_to_currency(Decimal(str(amount)), currency), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls.of(0, currency)

    def _check_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise ValueError(f"Currency mismatch: {self.currency} vs {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> "Money":
        return Money(amount=-self.amount, currency=self.currency)

    def times(self, factor: NumberLike) -> "Money":
        """Multiply and round to currency precision"""
        return Money.of(self.amount * Decimal(str(factor)), self.currency)

    def rounded(self) -> "Money":
        return Money.of(self.amount, self.currency)

    def compare(self, other: "Money") -> int:
        self._check_currency(other)
        return (self.amount > other.amount) - (self.amount < other.amount)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


def percentage_of(money: Money, percentage: NumberLike, multiplier: NumberLike = 1) -> Money:
    """percentage% of money, times multiplier, rounded once"""
    factor = Decimal(str(percentage)) / Decimal(100) * Decimal(str(multiplier))
    return money.times(factor)


# ====================
# Calendar helpers
# ====================

def business_today(timezone_name: str) -> date:
    """Today's calendar date in the business's timezone"""
    return datetime.now(ZoneInfo(timezone_name)).date()


def days_between(start: date, end: date) -> int:
    """Calendar days from start to end (end exclusive); negative if end < start"""
    return (end - start).days


def inclusive_days(start: date, end: date) -> int:
    """Number of calendar days in [start, end]"""
    return (end - start).days + 1


def add_days(d: date, days: int) -> date:
    return d + timedelta(days=days)


def add_months(d: date, months: int) -> date:
    """Calendar month arithmetic clamped to month end (Jan 31 + 1 month = Feb 28/29)"""
    return d + relativedelta(months=months)


def whole_months_between(start: date, end: date) -> int:
    """Complete calendar months from start to end; 0 when end <= start"""
    if end <= start:
        return 0
    delta = relativedelta(end, start)
    return delta.years * 12 + delta.months


def next_period_start(current_period_end: date) -> date:
    return current_period_end + timedelta(days=1)


def period_end_for(period_start: date, months: int) -> date:
    """Last day (inclusive) of a period of `months` calendar months starting on period_start"""
    return add_months(period_start, months) - timedelta(days=1)


__all__ = [
    "Money",
    "currency_precision",
    "round_to_currency",
    "percentage_of",
    "business_today",
    "days_between",
    "inclusive_days",
    "add_days",
    "add_months",
    "whole_months_between",
    "next_period_start",
    "period_end_for",
]

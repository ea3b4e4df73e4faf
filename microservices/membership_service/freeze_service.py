"""
Freeze Balance Manager

Freezes pause a subscription without losing billing continuity. The balance
is only consumed when a freeze closes and the actual days are known; the
current period is then extended by the same number of days.
"""

import logging
from datetime import date
from typing import Optional, Tuple

from .events.models import MembershipEventType
from .models import (
    ActiveFreeze,
    FreezeBalanceResponse,
    FreezeHistory,
    FreezeRequest,
    FreezeSource,
    GrantFreezeDaysRequest,
    Subscription,
    SubscriptionStatus,
)
from .money import add_days, days_between
from .protocols import InsufficientBalanceError, MembershipRepositoryProtocol, ValidationError
from .service_base import MembershipComponent, new_id, retry_on_conflict
from .subscription_service import require_subscription_status

logger = logging.getLogger(__name__)

FREEZABLE_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)


def consumed_freeze_days(freeze: ActiveFreeze, balance: int, today: date) -> Tuple[int, bool]:
    """
    Days to charge against the balance when closing a freeze today.

    Returns (days_used, clamped). Elapsed days never exceed the planned length,
    and the result never exceeds the remaining balance.
    """
    elapsed = max(days_between(freeze.start_date, today), 0)
    if freeze.planned_end_date is not None:
        elapsed = min(elapsed, days_between(freeze.start_date, freeze.planned_end_date))
    if elapsed > balance:
        return balance, True
    return elapsed, False


class FreezeService(MembershipComponent):
    """Freeze, unfreeze and freeze-day grants"""

    def _open_freeze_cap(self, plan_cap: Optional[int]) -> int:
        return plan_cap or self.policy.max_open_freeze_days

    async def freeze_in_tx(
        self,
        tx: MembershipRepositoryProtocol,
        subscription: Subscription,
        today: date,
        end_date: Optional[date] = None,
        reason: Optional[str] = None,
        source: FreezeSource = FreezeSource.MEMBER_SELF_SERVICE,
    ) -> Subscription:
        require_subscription_status(subscription, FREEZABLE_STATUSES, "freeze")

        if end_date is not None:
            if end_date <= today:
                raise ValidationError(f"Freeze end date {end_date} must be after {today}")
            planned_days = days_between(today, end_date)
            if subscription.freeze_days_remaining <= 0 or planned_days > subscription.freeze_days_remaining:
                raise InsufficientBalanceError(
                    f"Subscription {subscription.subscription_id} has {subscription.freeze_days_remaining} "
                    f"freeze days, {planned_days} requested",
                    available=subscription.freeze_days_remaining,
                    requested=planned_days,
                )
            planned_end = end_date
        else:
            if subscription.freeze_days_remaining <= 0:
                raise InsufficientBalanceError(
                    f"Subscription {subscription.subscription_id} has no freeze days left",
                    available=0,
                    requested=1,
                )
            # Open-ended: runs until unfrozen, never past the plan's cap
            plan = await self._require_plan(tx, subscription.plan_id)
            planned_end = add_days(today, self._open_freeze_cap(plan.max_open_freeze_days))

        return await tx.update_subscription(subscription.model_copy(update={
            "status": SubscriptionStatus.FROZEN,
            "active_freeze": ActiveFreeze(
                start_date=today, planned_end_date=planned_end, source=source, reason=reason
            ),
        }))

    async def end_freeze_in_tx(
        self,
        tx: MembershipRepositoryProtocol,
        subscription: Subscription,
        today: date,
        recorded_by: Optional[str] = None,
    ) -> Tuple[Subscription, FreezeHistory]:
        """Close the open freeze, consume the balance and extend the current period"""
        require_subscription_status(subscription, (SubscriptionStatus.FROZEN,), "unfreeze")
        freeze = subscription.active_freeze

        days_used, clamped = consumed_freeze_days(freeze, subscription.freeze_days_remaining, today)
        if clamped:
            logger.warning(
                f"Freeze of subscription {subscription.subscription_id} ran "
                f"{days_between(freeze.start_date, today)} days but only "
                f"{subscription.freeze_days_remaining} remained; clamped"
            )

        subscription = await tx.update_subscription(subscription.model_copy(update={
            "status": SubscriptionStatus.ACTIVE,
            "active_freeze": None,
            "freeze_days_remaining": subscription.freeze_days_remaining - days_used,
            "total_freeze_days_used": subscription.total_freeze_days_used + days_used,
            "current_period_end": add_days(subscription.current_period_end, days_used),
        }))
        entry = await tx.add_freeze_history(FreezeHistory(
            entry_id=new_id("frz"),
            subscription_id=subscription.subscription_id,
            start_date=freeze.start_date,
            end_date=today,
            days_used=days_used,
            source=freeze.source,
            reason=freeze.reason,
            recorded_by=recorded_by,
        ))
        return subscription, entry

    async def grant_in_tx(
        self,
        tx: MembershipRepositoryProtocol,
        subscription: Subscription,
        days: int,
        today: date,
        reason: Optional[str] = None,
        granted_by: Optional[str] = None,
    ) -> Subscription:
        if days <= 0:
            raise ValidationError("Granted freeze days must be positive")
        if subscription.is_terminal:
            raise ValidationError(
                f"Cannot grant freeze days to {subscription.status.value} subscription {subscription.subscription_id}"
            )
        subscription = await tx.update_subscription(subscription.model_copy(update={
            "freeze_days_remaining": subscription.freeze_days_remaining + days,
        }))
        await tx.add_freeze_history(FreezeHistory(
            entry_id=new_id("frz"),
            subscription_id=subscription.subscription_id,
            start_date=today,
            end_date=today,
            days_used=0,
            days_granted=days,
            source=FreezeSource.SYSTEM,
            reason=reason,
            recorded_by=granted_by,
        ))
        return subscription

    # ====================
    # Operations
    # ====================

    @retry_on_conflict
    async def freeze(self, subscription_id: str, request: FreezeRequest) -> Subscription:
        today = self.today()
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            subscription = await self.freeze_in_tx(
                tx, subscription, today, request.end_date, request.reason, request.source
            )

        logger.info(
            f"Subscription {subscription_id} frozen from {today} "
            f"until {subscription.active_freeze.planned_end_date}"
        )
        await self._publish_event(
            MembershipEventType.SUBSCRIPTION_FROZEN,
            {
                "subscription_id": subscription_id,
                "member_id": subscription.member_id,
                "start_date": today,
                "planned_end_date": subscription.active_freeze.planned_end_date,
                "source": request.source.value,
            },
        )
        return subscription

    @retry_on_conflict
    async def unfreeze(self, subscription_id: str, recorded_by: Optional[str] = None) -> Subscription:
        today = self.today()
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            subscription, entry = await self.end_freeze_in_tx(tx, subscription, today, recorded_by)

        await self.after_unfreeze(subscription, entry)
        return subscription

    async def after_unfreeze(self, subscription: Subscription, entry: FreezeHistory) -> None:
        logger.info(
            f"Subscription {subscription.subscription_id} unfrozen after {entry.days_used} days, "
            f"{subscription.freeze_days_remaining} left"
        )
        await self._publish_event(
            MembershipEventType.SUBSCRIPTION_UNFROZEN,
            {
                "subscription_id": subscription.subscription_id,
                "member_id": subscription.member_id,
                "days_used": entry.days_used,
                "freeze_days_remaining": subscription.freeze_days_remaining,
                "current_period_end": subscription.current_period_end,
            },
        )

    @retry_on_conflict
    async def grant_freeze_days(self, subscription_id: str, request: GrantFreezeDaysRequest) -> Subscription:
        """Admin freeze package: adds days to the balance, logged as a SYSTEM grant"""
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            subscription = await self.grant_in_tx(
                tx, subscription, request.days, self.today(), request.reason, request.granted_by
            )

        logger.info(f"Granted {request.days} freeze days to subscription {subscription_id}")
        await self._publish_event(
            MembershipEventType.SUBSCRIPTION_FREEZE_DAYS_GRANTED,
            {
                "subscription_id": subscription_id,
                "member_id": subscription.member_id,
                "days": request.days,
                "granted_by": request.granted_by,
                "freeze_days_remaining": subscription.freeze_days_remaining,
            },
        )
        return subscription

    async def get_freeze_balance(self, subscription_id: str) -> FreezeBalanceResponse:
        subscription = await self._require_subscription(self.repository, subscription_id)
        history = await self.repository.list_freeze_history(subscription_id)
        return FreezeBalanceResponse(
            subscription_id=subscription_id,
            freeze_days_remaining=subscription.freeze_days_remaining,
            total_freeze_days_used=subscription.total_freeze_days_used,
            is_frozen=subscription.status == SubscriptionStatus.FROZEN,
            frozen_since=subscription.active_freeze.start_date if subscription.active_freeze else None,
            history=history,
        )


__all__ = ["FreezeService", "consumed_freeze_days"]

"""
Subscription State Machine

TRIAL/ACTIVE -> FROZEN -> ACTIVE, TRIAL/ACTIVE/FROZEN -> CANCELLED (terminal),
ACTIVE -> EXPIRED (terminal), ACTIVE -> ACTIVE on renewal. Also owns the
per-period usage counters (classes, guest passes).
"""

import logging
from datetime import datetime
from typing import Optional

from .events.models import MembershipEventType
from .models import (
    MembershipPlan,
    RenewSubscriptionRequest,
    Subscription,
    SubscriptionStatus,
)
from .money import next_period_start, period_end_for
from .plan_change_service import apply_due_scheduled_change
from .protocols import (
    InsufficientBalanceError,
    InvalidStateTransitionError,
    MembershipRepositoryProtocol,
)
from .service_base import MembershipComponent, retry_on_conflict

logger = logging.getLogger(__name__)


def require_subscription_status(subscription: Subscription, allowed, action: str) -> None:
    if subscription.status not in allowed:
        raise InvalidStateTransitionError(
            f"Cannot {action} subscription {subscription.subscription_id} in status {subscription.status.value}",
            current_status=subscription.status.value,
        )


def advance_period(subscription: Subscription, plan: MembershipPlan) -> Subscription:
    """Next billing period with counters reset to the plan's allowances"""
    start = next_period_start(subscription.current_period_end)
    updates = {
        "status": SubscriptionStatus.ACTIVE,
        "current_period_start": start,
        "current_period_end": period_end_for(start, subscription.billing_cycle.months),
        "classes_remaining": plan.classes_per_period,
        "guest_passes_remaining": plan.guest_passes_per_period,
    }
    discount = subscription.active_discount
    if discount and start >= discount.ends_on:
        updates["agreed_price"] = discount.original_price
        updates["active_discount"] = None
    return subscription.model_copy(update=updates)


def expire_subscription(subscription: Subscription) -> Subscription:
    require_subscription_status(subscription, (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE), "expire")
    return subscription.model_copy(update={"status": SubscriptionStatus.EXPIRED})


def cancel_subscription(subscription: Subscription, now: datetime, effective_date) -> Subscription:
    require_subscription_status(
        subscription,
        (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN),
        "cancel",
    )
    return subscription.model_copy(update={
        "status": SubscriptionStatus.CANCELLED,
        "cancelled_at": now,
        "cancellation_effective_date": effective_date,
        "auto_renew": False,
    })


class SubscriptionService(MembershipComponent):
    """Reads, renewals and usage counters"""

    async def _read_with_due_changes(
        self, subscription: Subscription
    ) -> Subscription:
        """Apply a due scheduled plan change before handing the subscription out"""
        pending = await self.repository.get_pending_scheduled_change(subscription.subscription_id)
        if not pending or pending.scheduled_date > self.today():
            return subscription

        async with self.repository.transaction(lock_subscription_id=subscription.subscription_id) as tx:
            subscription, applied = await apply_due_scheduled_change(
                tx, subscription.subscription_id, self.today(), self.now()
            )
        if applied:
            await self._publish_event(
                MembershipEventType.PLAN_CHANGE_APPLIED,
                {
                    "subscription_id": subscription.subscription_id,
                    "member_id": subscription.member_id,
                    "scheduled_change_id": applied.change_id,
                    "new_plan_id": applied.new_plan_id,
                    "trigger": "read",
                },
            )
        return subscription

    @retry_on_conflict
    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self._require_subscription(self.repository, subscription_id)
        return await self._read_with_due_changes(subscription)

    @retry_on_conflict
    async def get_member_subscription(self, member_id: str) -> Subscription:
        subscription = await self.subscription_for_member(member_id)
        return await self._read_with_due_changes(subscription)

    @retry_on_conflict
    async def renew(self, subscription_id: str, request: Optional[RenewSubscriptionRequest] = None) -> Subscription:
        """Advance one billing cycle; requires ACTIVE"""
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            subscription = await self.renew_in_tx(tx, subscription)

        await self.after_renewal(subscription, request.requested_by if request else None)
        return subscription

    async def renew_in_tx(self, tx: MembershipRepositoryProtocol, subscription: Subscription) -> Subscription:
        require_subscription_status(subscription, (SubscriptionStatus.ACTIVE,), "renew")
        plan = await self._require_plan(tx, subscription.plan_id)
        return await tx.update_subscription(advance_period(subscription, plan))

    async def convert_trial_in_tx(self, tx: MembershipRepositoryProtocol, subscription: Subscription) -> Subscription:
        """End of trial: first paid period starts the day after the trial"""
        require_subscription_status(subscription, (SubscriptionStatus.TRIAL,), "convert trial of")
        plan = await self._require_plan(tx, subscription.plan_id)
        return await tx.update_subscription(advance_period(subscription, plan))

    async def after_renewal(self, subscription: Subscription, requested_by: Optional[str] = None) -> None:
        logger.info(
            f"Subscription {subscription.subscription_id} renewed: "
            f"{subscription.current_period_start} .. {subscription.current_period_end}"
        )
        await self._publish_event(
            MembershipEventType.SUBSCRIPTION_RENEWED,
            {
                "subscription_id": subscription.subscription_id,
                "member_id": subscription.member_id,
                "current_period_start": subscription.current_period_start,
                "current_period_end": subscription.current_period_end,
                "agreed_price": subscription.agreed_price,
                "requested_by": requested_by,
            },
        )
        await self._request_charge(
            subscription, subscription.agreed_price, "membership_period", subscription.subscription_id
        )

    # ====================
    # Usage counters
    # ====================

    @retry_on_conflict
    async def use_class(self, subscription_id: str) -> Subscription:
        return await self._consume(subscription_id, "classes_remaining", "class")

    @retry_on_conflict
    async def use_guest_pass(self, subscription_id: str) -> Subscription:
        return await self._consume(subscription_id, "guest_passes_remaining", "guest pass")

    async def _consume(self, subscription_id: str, counter: str, label: str) -> Subscription:
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            require_subscription_status(
                subscription, (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE), f"use a {label} on"
            )
            remaining = getattr(subscription, counter)
            if remaining is None:
                # Unlimited
                return subscription
            if remaining <= 0:
                raise InsufficientBalanceError(
                    f"No {label} remaining on subscription {subscription_id}", available=0, requested=1
                )
            subscription = await tx.update_subscription(
                subscription.model_copy(update={counter: remaining - 1})
            )

        logger.debug(f"Subscription {subscription_id} used a {label}, {remaining - 1} left")
        return subscription


__all__ = [
    "SubscriptionService",
    "advance_period",
    "expire_subscription",
    "cancel_subscription",
    "require_subscription_status",
]

"""
Plan-Change Service

Previews and executes plan changes. Upgrades (and lateral moves) apply
immediately with proration; downgrades default to a scheduled change that
takes effect the day after the current period ends. At most one change per
subscription is PENDING at any time.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from .events.models import MembershipEventType
from .models import (
    MembershipPlan,
    PlanChangeHistory,
    PlanChangePreview,
    PlanChangeRequest,
    PlanChangeResult,
    PlanChangeType,
    ProrationMode,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    Subscription,
    SubscriptionStatus,
)
from .money import Money, next_period_start
from .proration import calculate_proration, classify_change, default_proration_mode, deferred_proration
from .protocols import (
    BusinessRuleViolationError,
    InvalidStateTransitionError,
    MembershipRepositoryProtocol,
    NotFoundError,
    ValidationError,
)
from .service_base import MembershipComponent, new_id, retry_on_conflict

logger = logging.getLogger(__name__)

CHANGEABLE_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)


def _switch_plan(subscription: Subscription, plan: MembershipPlan) -> Subscription:
    return subscription.model_copy(update={
        "plan_id": plan.plan_id,
        "agreed_price": plan.price,
        "classes_remaining": plan.classes_per_period,
        "guest_passes_remaining": plan.guest_passes_per_period,
        "active_discount": None,
    })


async def apply_due_scheduled_change(
    tx: MembershipRepositoryProtocol,
    subscription_id: str,
    today: date,
    now: datetime,
) -> Tuple[Subscription, Optional[ScheduledPlanChange]]:
    """
    Apply the subscription's PENDING change if its date has come.

    Idempotent: returns (subscription, None) when nothing is due. A change
    left behind by a terminated subscription is cancelled instead.
    """
    subscription = await tx.get_subscription(subscription_id)
    if not subscription:
        raise NotFoundError("Subscription", subscription_id)

    change = await tx.get_pending_scheduled_change(subscription_id)
    if not change or change.scheduled_date > today:
        return subscription, None

    if subscription.is_terminal:
        await tx.update_scheduled_change(change.model_copy(update={
            "status": ScheduledChangeStatus.CANCELLED,
            "cancellation_reason": f"Subscription {subscription.status.value}",
            "cancelled_at": now,
        }))
        return subscription, None

    new_plan = await tx.get_plan(change.new_plan_id)
    if not new_plan:
        raise NotFoundError("Plan", change.new_plan_id)

    old_price = subscription.agreed_price
    subscription = await tx.update_subscription(_switch_plan(subscription, new_plan))
    zero = Money.zero(old_price.currency)
    await tx.create_plan_change_history(PlanChangeHistory(
        history_id=new_id("pch"),
        subscription_id=subscription_id,
        member_id=subscription.member_id,
        old_plan_id=change.current_plan_id,
        new_plan_id=change.new_plan_id,
        change_type=change.change_type,
        proration_mode=ProrationMode.END_OF_PERIOD,
        old_price=old_price,
        new_price=new_plan.price,
        credit_amount=zero,
        charge_amount=zero,
        net_amount=zero,
        effective_date=change.scheduled_date,
        scheduled_change_id=change.change_id,
        initiated_by_member=change.initiated_by_member,
    ))
    applied = await tx.update_scheduled_change(change.model_copy(update={
        "status": ScheduledChangeStatus.APPLIED,
        "applied_at": now,
    }))
    logger.info(f"Applied scheduled change {change.change_id} on subscription {subscription_id}")
    return subscription, applied


class PlanChangeService(MembershipComponent):
    """Plan-change previews, execution and scheduled-change management"""

    async def validate_target(
        self, repo: MembershipRepositoryProtocol, subscription: Subscription, new_plan_id: str
    ) -> Tuple[MembershipPlan, PlanChangeType]:
        if subscription.status not in CHANGEABLE_STATUSES:
            raise InvalidStateTransitionError(
                f"Plan of subscription {subscription.subscription_id} cannot change in status "
                f"{subscription.status.value}",
                current_status=subscription.status.value,
            )
        if new_plan_id == subscription.plan_id:
            raise ValidationError(f"Subscription {subscription.subscription_id} is already on plan {new_plan_id}")

        new_plan = await self._require_plan(repo, new_plan_id)
        if not new_plan.is_active:
            raise ValidationError(f"Plan {new_plan_id} is not available")
        if new_plan.price.currency != subscription.agreed_price.currency:
            raise ValidationError(
                f"Plan {new_plan_id} is priced in {new_plan.price.currency}, "
                f"subscription in {subscription.agreed_price.currency}"
            )

        current_plan = await repo.get_plan(subscription.plan_id)
        reference_price = current_plan.price if current_plan else subscription.agreed_price
        return new_plan, classify_change(reference_price, new_plan.price)

    def _preview(
        self,
        subscription: Subscription,
        new_plan: MembershipPlan,
        change_type: PlanChangeType,
        mode: ProrationMode,
        today: date,
    ) -> PlanChangePreview:
        if mode == ProrationMode.IMMEDIATE:
            breakdown = calculate_proration(
                subscription.agreed_price,
                new_plan.price,
                subscription.current_period_start,
                subscription.current_period_end,
                today,
            )
            effective = today
        else:
            breakdown = deferred_proration(
                subscription.agreed_price.currency,
                subscription.current_period_start,
                subscription.current_period_end,
                today,
            )
            effective = next_period_start(subscription.current_period_end)

        return PlanChangePreview(
            subscription_id=subscription.subscription_id,
            current_plan_id=subscription.plan_id,
            new_plan_id=new_plan.plan_id,
            change_type=change_type,
            proration_mode=mode,
            effective_date=effective,
            period_length_days=breakdown.period_length_days,
            days_remaining=breakdown.days_remaining,
            credit_amount=breakdown.credit_amount,
            charge_amount=breakdown.charge_amount,
            net_amount=breakdown.net_amount,
        )

    async def preview_plan_change(
        self,
        subscription_id: str,
        new_plan_id: str,
        proration_mode: Optional[ProrationMode] = None,
    ) -> PlanChangePreview:
        """Pure read: what would happen if the change were made today"""
        subscription = await self._require_subscription(self.repository, subscription_id)
        new_plan, change_type = await self.validate_target(self.repository, subscription, new_plan_id)
        mode = proration_mode or default_proration_mode(change_type)
        return self._preview(subscription, new_plan, change_type, mode, self.today())

    async def preview_for_member(
        self, member_id: str, new_plan_id: str, proration_mode: Optional[ProrationMode] = None
    ) -> PlanChangePreview:
        subscription = await self.subscription_for_member(member_id)
        return await self.preview_plan_change(subscription.subscription_id, new_plan_id, proration_mode)

    async def apply_immediate_change_in_tx(
        self,
        tx: MembershipRepositoryProtocol,
        subscription: Subscription,
        new_plan: MembershipPlan,
        change_type: PlanChangeType,
        today: date,
        initiated_by_member: bool = True,
    ) -> Tuple[Subscription, PlanChangeHistory]:
        """Switch plans now, record history, supersede any pending scheduled change"""
        preview = self._preview(subscription, new_plan, change_type, ProrationMode.IMMEDIATE, today)

        pending = await tx.get_pending_scheduled_change(subscription.subscription_id)
        if pending:
            await tx.update_scheduled_change(pending.model_copy(update={
                "status": ScheduledChangeStatus.CANCELLED,
                "cancellation_reason": "Superseded by immediate plan change",
                "cancelled_at": self.now(),
            }))

        old_price = subscription.agreed_price
        old_plan_id = subscription.plan_id
        subscription = await tx.update_subscription(_switch_plan(subscription, new_plan))
        history = await tx.create_plan_change_history(PlanChangeHistory(
            history_id=new_id("pch"),
            subscription_id=subscription.subscription_id,
            member_id=subscription.member_id,
            old_plan_id=old_plan_id,
            new_plan_id=new_plan.plan_id,
            change_type=change_type,
            proration_mode=ProrationMode.IMMEDIATE,
            old_price=old_price,
            new_price=new_plan.price,
            credit_amount=preview.credit_amount,
            charge_amount=preview.charge_amount,
            net_amount=preview.net_amount,
            days_remaining=preview.days_remaining,
            period_length_days=preview.period_length_days,
            effective_date=today,
            initiated_by_member=initiated_by_member,
        ))
        return subscription, history

    async def settle_immediate_change(self, subscription: Subscription, history: PlanChangeHistory) -> None:
        """Post-commit: request the net charge or credit and announce the change"""
        if history.net_amount.is_positive:
            await self._request_charge(subscription, history.net_amount, "plan_change_proration", history.history_id)
        elif history.net_amount.is_negative:
            # Refund vs wallet credit is the invoicing system's decision
            await self._request_credit(subscription, -history.net_amount, "plan_change_proration", history.history_id)

        await self._publish_event(
            MembershipEventType.PLAN_CHANGE_APPLIED,
            {
                "subscription_id": subscription.subscription_id,
                "member_id": subscription.member_id,
                "old_plan_id": history.old_plan_id,
                "new_plan_id": history.new_plan_id,
                "change_type": history.change_type.value,
                "net_amount": history.net_amount,
                "trigger": "immediate",
            },
        )

    @retry_on_conflict
    async def change_plan(
        self,
        subscription_id: str,
        request: PlanChangeRequest,
        allowed_types: Optional[Iterable[PlanChangeType]] = None,
        initiated_by_member: bool = True,
    ) -> PlanChangeResult:
        """Execute a plan change now or schedule it for the next period"""
        today = self.today()
        scheduled: Optional[ScheduledPlanChange] = None
        history: Optional[PlanChangeHistory] = None

        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            new_plan, change_type = await self.validate_target(tx, subscription, request.new_plan_id)

            if allowed_types is not None and change_type not in tuple(allowed_types):
                raise ValidationError(
                    f"Changing to plan {request.new_plan_id} is a {change_type.value}, "
                    f"not allowed through this operation"
                )
            if await tx.get_open_cancellation_request(subscription_id):
                raise BusinessRuleViolationError(
                    f"Subscription {subscription_id} has a pending cancellation; withdraw it before changing plans"
                )

            mode = request.proration_mode or default_proration_mode(change_type)

            if mode == ProrationMode.IMMEDIATE:
                subscription, history = await self.apply_immediate_change_in_tx(
                    tx, subscription, new_plan, change_type, today, initiated_by_member
                )
            else:
                pending = await tx.get_pending_scheduled_change(subscription_id)
                if pending:
                    await tx.update_scheduled_change(pending.model_copy(update={
                        "status": ScheduledChangeStatus.CANCELLED,
                        "cancellation_reason": "Superseded by a newer plan change",
                        "cancelled_at": self.now(),
                    }))
                scheduled = await tx.create_scheduled_change(ScheduledPlanChange(
                    change_id=new_id("spc"),
                    subscription_id=subscription_id,
                    current_plan_id=subscription.plan_id,
                    new_plan_id=new_plan.plan_id,
                    change_type=change_type,
                    scheduled_date=next_period_start(subscription.current_period_end),
                    initiated_by_member=initiated_by_member,
                    reason=request.reason,
                ))

        if history:
            logger.info(
                f"Subscription {subscription_id} changed {history.old_plan_id} -> {history.new_plan_id} "
                f"immediately, net {history.net_amount}"
            )
            await self.settle_immediate_change(subscription, history)
            return PlanChangeResult(
                change_type=history.change_type,
                effective_date=today,
                was_immediate=True,
                net_amount=history.net_amount.amount,
                currency=history.net_amount.currency,
            )

        logger.info(f"Subscription {subscription_id} scheduled change to {scheduled.new_plan_id} on {scheduled.scheduled_date}")
        await self._publish_event(
            MembershipEventType.PLAN_CHANGE_SCHEDULED,
            {
                "subscription_id": subscription_id,
                "member_id": subscription.member_id,
                "scheduled_change_id": scheduled.change_id,
                "new_plan_id": scheduled.new_plan_id,
                "scheduled_date": scheduled.scheduled_date,
            },
        )
        return PlanChangeResult(
            change_type=scheduled.change_type,
            effective_date=scheduled.scheduled_date,
            was_immediate=False,
            scheduled_change_id=scheduled.change_id,
            net_amount=Money.zero(subscription.agreed_price.currency).amount,
            currency=subscription.agreed_price.currency,
        )

    async def change_plan_for_member(
        self,
        member_id: str,
        request: PlanChangeRequest,
        allowed_types: Optional[Iterable[PlanChangeType]] = None,
    ) -> PlanChangeResult:
        subscription = await self.subscription_for_member(member_id)
        return await self.change_plan(subscription.subscription_id, request, allowed_types)

    @retry_on_conflict
    async def cancel_scheduled_change(
        self, change_id: str, reason: Optional[str] = None, member_id: Optional[str] = None
    ) -> ScheduledPlanChange:
        """PENDING -> CANCELLED; an already cancelled change is returned unchanged"""
        change = await self.repository.get_scheduled_change(change_id)
        if not change:
            raise NotFoundError("ScheduledPlanChange", change_id)

        async with self.repository.transaction(lock_subscription_id=change.subscription_id) as tx:
            change = await tx.get_scheduled_change(change_id)
            if member_id is not None:
                subscription = await self._require_subscription(tx, change.subscription_id)
                if subscription.member_id != member_id:
                    raise NotFoundError("ScheduledPlanChange", change_id)

            if change.status == ScheduledChangeStatus.CANCELLED:
                return change
            if change.status == ScheduledChangeStatus.APPLIED:
                raise InvalidStateTransitionError(
                    f"Scheduled change {change_id} was already applied",
                    current_status=change.status.value,
                    target_status=ScheduledChangeStatus.CANCELLED.value,
                )
            change = await tx.update_scheduled_change(change.model_copy(update={
                "status": ScheduledChangeStatus.CANCELLED,
                "cancellation_reason": reason,
                "cancelled_at": self.now(),
            }))

        logger.info(f"Scheduled change {change_id} cancelled: {reason}")
        await self._publish_event(
            MembershipEventType.PLAN_CHANGE_CANCELLED,
            {"scheduled_change_id": change_id, "subscription_id": change.subscription_id, "reason": reason},
        )
        return change

    async def get_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        await self._require_subscription(self.repository, subscription_id)
        return await self.repository.list_plan_change_history(subscription_id)


__all__ = ["PlanChangeService", "apply_due_scheduled_change"]

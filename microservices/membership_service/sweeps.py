"""
Daily Sweeps

Scheduler-driven transitions: due cancellations, due scheduled plan changes,
freezes past their planned end, and period ends (trial conversion, renewal,
expiry, contract completion). Every item runs in its own transaction and the
whole run is safe to repeat for the same day.
"""

import logging
from datetime import date
from typing import Optional

from .cancellation_service import CancellationService
from .contract_service import complete_contract
from .events.models import MembershipEventType
from .freeze_service import FreezeService
from .models import ContractStatus, ContractType, SubscriptionStatus, SweepResult
from .plan_change_service import apply_due_scheduled_change
from .service_base import MembershipComponent
from .subscription_service import SubscriptionService, expire_subscription

logger = logging.getLogger(__name__)


class MembershipSweeper(MembershipComponent):
    """Runs the periodic transitions through the same components as interactive calls"""

    def __init__(
        self,
        *args,
        subscriptions: SubscriptionService,
        freeze: FreezeService,
        cancellations: CancellationService,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.subscriptions = subscriptions
        self.freeze = freeze
        self.cancellations = cancellations

    def _failed(self, result: SweepResult, step: str, entity_id: str, error: Exception) -> None:
        logger.error(f"Sweep step {step} failed for {entity_id}: {error}", exc_info=True)
        result.failures.append({"step": step, "id": entity_id, "error": str(error)})

    async def run_all(self, today: Optional[date] = None) -> SweepResult:
        today = today or self.today()
        result = SweepResult(run_date=today)
        logger.info(f"Starting membership sweep for {today}")

        await self.process_due_cancellations(today, result)
        await self.process_due_plan_changes(today, result)
        await self.process_due_freezes(today, result)
        await self.process_period_ends(today, result)

        logger.info(
            f"Sweep {today} done: {result.cancellations_finalized} cancellations, "
            f"{result.plan_changes_applied} plan changes, {result.freezes_ended} freezes, "
            f"{result.subscriptions_renewed} renewed, {result.subscriptions_expired} expired, "
            f"{len(result.failures)} failures"
        )
        return result

    async def process_due_cancellations(self, today: date, result: SweepResult) -> SweepResult:
        for request in await self.repository.list_due_cancellations(today):
            try:
                await self.cancellations.finalize(request.request_id, today=today)
                result.cancellations_finalized += 1
            except Exception as e:
                self._failed(result, "cancellation", request.request_id, e)
        return result

    async def process_due_plan_changes(self, today: date, result: SweepResult) -> SweepResult:
        for change in await self.repository.list_due_scheduled_changes(today):
            try:
                async with self.repository.transaction(lock_subscription_id=change.subscription_id) as tx:
                    subscription, applied = await apply_due_scheduled_change(
                        tx, change.subscription_id, today, self.now()
                    )
                if applied:
                    result.plan_changes_applied += 1
                    await self._publish_event(
                        MembershipEventType.PLAN_CHANGE_APPLIED,
                        {
                            "subscription_id": subscription.subscription_id,
                            "member_id": subscription.member_id,
                            "scheduled_change_id": applied.change_id,
                            "new_plan_id": applied.new_plan_id,
                            "trigger": "sweep",
                        },
                    )
            except Exception as e:
                self._failed(result, "plan_change", change.change_id, e)
        return result

    async def process_due_freezes(self, today: date, result: SweepResult) -> SweepResult:
        for due in await self.repository.list_frozen_subscriptions_due(today):
            try:
                async with self.repository.transaction(lock_subscription_id=due.subscription_id) as tx:
                    subscription = await self._require_subscription(tx, due.subscription_id)
                    if subscription.status != SubscriptionStatus.FROZEN:
                        continue
                    end = min(today, subscription.active_freeze.planned_end_date or today)
                    subscription, entry = await self.freeze.end_freeze_in_tx(tx, subscription, end, "system")
                result.freezes_ended += 1
                await self.freeze.after_unfreeze(subscription, entry)
            except Exception as e:
                self._failed(result, "freeze", due.subscription_id, e)
        return result

    async def process_period_ends(self, today: date, result: SweepResult) -> SweepResult:
        """Convert trials, renew or expire subscriptions whose period has ended"""
        for due in await self.repository.list_subscriptions_due_for_period_end(today):
            try:
                await self._end_period(due.subscription_id, today, result)
            except Exception as e:
                self._failed(result, "period_end", due.subscription_id, e)
        return result

    async def _end_period(self, subscription_id: str, today: date, result: SweepResult) -> None:
        completed = None
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            if subscription.current_period_end >= today or subscription.is_terminal:
                return
            if subscription.status == SubscriptionStatus.FROZEN:
                return

            contract = await tx.get_contract(subscription.contract_id) if subscription.contract_id else None
            # A contract in its notice period keeps billing until the sweep finalizes it
            within_commitment = bool(
                contract
                and contract.contract_type == ContractType.FIXED_TERM
                and contract.commitment_end_date > subscription.current_period_end
            )
            in_notice = bool(contract and contract.status == ContractStatus.IN_NOTICE_PERIOD)

            renews = subscription.auto_renew or within_commitment or in_notice
            if renews and subscription.status == SubscriptionStatus.TRIAL:
                subscription = await self.subscriptions.convert_trial_in_tx(tx, subscription)
                action = "renewed"
            elif renews:
                subscription = await self.subscriptions.renew_in_tx(tx, subscription)
                action = "renewed"
            else:
                subscription = await tx.update_subscription(expire_subscription(subscription))
                action = "expired"
                if contract and contract.status == ContractStatus.ACTIVE:
                    completed = await tx.update_contract(complete_contract(contract, self.now()))

        if action == "renewed":
            result.subscriptions_renewed += 1
            await self.subscriptions.after_renewal(subscription, "sweep")
            return

        result.subscriptions_expired += 1
        logger.info(f"Subscription {subscription_id} expired at period end {subscription.current_period_end}")
        await self._publish_event(
            MembershipEventType.SUBSCRIPTION_EXPIRED,
            {
                "subscription_id": subscription_id,
                "member_id": subscription.member_id,
                "expired_on": subscription.current_period_end,
            },
        )
        if completed:
            result.contracts_completed += 1
            await self._publish_event(
                MembershipEventType.CONTRACT_COMPLETED,
                {"contract_id": completed.contract_id, "member_id": completed.member_id},
            )


__all__ = ["MembershipSweeper"]

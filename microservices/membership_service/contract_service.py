"""
Contract State Machine

PENDING_SIGNATURE -> ACTIVE -> {IN_NOTICE_PERIOD -> CANCELLED} | COMPLETED,
with IN_NOTICE_PERIOD -> ACTIVE when a cancellation is withdrawn.

Module-level functions are the pure transitions and cancellation terms
(cooling-off, commitment, early-termination fee); ContractService owns
enrollment, approval and signature.
"""

import hashlib
import logging
from datetime import date, datetime
from typing import Optional, Tuple

from .events.models import MembershipEventType
from .models import (
    ActiveState,
    CancellationType,
    CancelledState,
    CompletedState,
    Contract,
    ContractEnrollmentResponse,
    ContractStatus,
    ContractType,
    CreateContractRequest,
    EarlyTerminationFeeType,
    InNoticePeriodState,
    PendingSignatureState,
    Subscription,
    SubscriptionStatus,
)
from .money import Money, add_days, add_months, percentage_of, period_end_for, whole_months_between
from .protocols import BusinessRuleViolationError, InvalidStateTransitionError, ValidationError
from .service_base import MembershipComponent, new_id, retry_on_conflict

logger = logging.getLogger(__name__)


# ====================
# Transitions
# ====================

def _require_status(contract: Contract, allowed: Tuple[ContractStatus, ...], target: ContractStatus) -> None:
    if contract.status not in allowed:
        raise InvalidStateTransitionError(
            f"Contract {contract.contract_id} cannot move from {contract.status.value} to {target.value}",
            current_status=contract.status.value,
            target_status=target.value,
        )


def activate_contract(contract: Contract, now: datetime) -> Contract:
    _require_status(contract, (ContractStatus.PENDING_SIGNATURE,), ContractStatus.ACTIVE)
    return contract.model_copy(update={"state": ActiveState(activated_at=now)})


def begin_notice_period(
    contract: Contract,
    now: datetime,
    notice_period_end_date: date,
    effective_date: date,
    reason: Optional[str] = None,
) -> Contract:
    _require_status(contract, (ContractStatus.ACTIVE,), ContractStatus.IN_NOTICE_PERIOD)
    state = InNoticePeriodState(
        activated_at=contract.state.activated_at,
        requested_at=now,
        notice_period_end_date=notice_period_end_date,
        effective_date=effective_date,
        cancellation_type=CancellationType.STANDARD,
        reason=reason,
    )
    return contract.model_copy(update={"state": state})


def withdraw_notice(contract: Contract) -> Contract:
    """IN_NOTICE_PERIOD back to ACTIVE; a cancelled contract is never resurrected"""
    _require_status(contract, (ContractStatus.IN_NOTICE_PERIOD,), ContractStatus.ACTIVE)
    return contract.model_copy(update={"state": ActiveState(activated_at=contract.state.activated_at)})


def cancel_within_cooling_off(contract: Contract, now: datetime, today: date, reason: Optional[str] = None) -> Contract:
    _require_status(
        contract, (ContractStatus.PENDING_SIGNATURE, ContractStatus.ACTIVE), ContractStatus.CANCELLED
    )
    if not is_within_cooling_off(contract, today):
        raise BusinessRuleViolationError(
            f"Cooling-off period of contract {contract.contract_id} ended on {contract.cooling_off_end_date}"
        )
    state = CancelledState(
        cancelled_at=now,
        effective_date=today,
        cancellation_type=CancellationType.WITHIN_COOLING_OFF,
        reason=reason,
    )
    return contract.model_copy(update={"state": state})


def finalize_notice(contract: Contract, now: datetime) -> Contract:
    _require_status(contract, (ContractStatus.IN_NOTICE_PERIOD,), ContractStatus.CANCELLED)
    notice: InNoticePeriodState = contract.state
    state = CancelledState(
        cancelled_at=now,
        effective_date=notice.effective_date,
        cancellation_type=notice.cancellation_type,
        reason=notice.reason,
    )
    return contract.model_copy(update={"state": state})


def complete_contract(contract: Contract, now: datetime) -> Contract:
    _require_status(contract, (ContractStatus.ACTIVE,), ContractStatus.COMPLETED)
    return contract.model_copy(update={"state": CompletedState(completed_at=now)})


# ====================
# Cancellation terms
# ====================

def is_within_cooling_off(contract: Contract, today: date) -> bool:
    return today <= contract.cooling_off_end_date


def cooling_off_days_remaining(contract: Contract, today: date) -> int:
    if not is_within_cooling_off(contract, today):
        return 0
    return (contract.cooling_off_end_date - today).days + 1


def is_within_commitment(contract: Contract, today: date) -> bool:
    return contract.commitment_end_date is not None and today < contract.commitment_end_date


def commitment_months_remaining(contract: Contract, today: date) -> int:
    if not is_within_commitment(contract, today):
        return 0
    return whole_months_between(today, contract.commitment_end_date)


def cancellation_dates(contract: Contract, today: date) -> Tuple[date, date]:
    """(notice_period_end_date, effective_date) for a standard cancellation requested today"""
    notice_end = add_days(today, contract.notice_period_days)
    effective = notice_end
    if is_within_commitment(contract, today) and contract.commitment_end_date > effective:
        effective = contract.commitment_end_date
    return notice_end, effective


def early_termination_fee(contract: Contract, agreed_price: Money, today: date) -> Money:
    """Fee owed for leaving now; zero within cooling-off or outside commitment"""
    zero = Money.zero(agreed_price.currency)
    if is_within_cooling_off(contract, today) or not is_within_commitment(contract, today):
        return zero

    if contract.early_termination_fee_type == EarlyTerminationFeeType.FIXED:
        return Money.of(contract.early_termination_fee_value, agreed_price.currency)
    if contract.early_termination_fee_type == EarlyTerminationFeeType.PERCENTAGE_OF_REMAINING:
        months = commitment_months_remaining(contract, today)
        return percentage_of(agreed_price, contract.early_termination_fee_value, months)
    return zero


# ====================
# Service
# ====================

class ContractService(MembershipComponent):
    """Enrollment, approval and signature of contracts"""

    @retry_on_conflict
    async def create_contract(self, request: CreateContractRequest) -> ContractEnrollmentResponse:
        """Create a contract and its subscription atomically"""
        plan = await self._require_plan(self.repository, request.plan_id)
        if not plan.is_active:
            raise ValidationError(f"Plan {plan.plan_id} is not available for enrollment")

        today = self.today()
        now = self.now()
        start = request.start_date or today

        contract_type = request.contract_type or plan.contract_type
        contract_term = request.contract_term or plan.contract_term
        commitment_end = (
            add_months(start, contract_term.months) if contract_type == ContractType.FIXED_TERM else None
        )

        cooling_off_days = next(
            d for d in (request.cooling_off_days, plan.cooling_off_days, self.policy.cooling_off_days)
            if d is not None
        )
        if cooling_off_days > self.policy.cooling_off_hard_cap_days:
            raise ValidationError(
                f"Cooling-off window of {cooling_off_days} days exceeds {self.policy.cooling_off_hard_cap_days}"
            )
        notice_days = next(
            d for d in (request.notice_period_days, plan.notice_period_days, self.policy.notice_period_days)
            if d is not None
        )

        if plan.trial_days == 1:
            raise ValidationError(f"Plan {plan.plan_id} has a one-day trial; a trial period spans at least two days")
        if plan.trial_days > 0:
            status = SubscriptionStatus.TRIAL
            period_end = add_days(start, plan.trial_days - 1)
        else:
            status = SubscriptionStatus.ACTIVE
            period_end = period_end_for(start, plan.billing_cycle.months)

        contract_id = new_id("ctr")
        subscription_id = new_id("sub")

        async with self.repository.transaction() as tx:
            existing = await tx.get_current_subscription_for_member(request.member_id)
            if existing and not existing.is_terminal:
                raise BusinessRuleViolationError(
                    f"Member {request.member_id} already has a {existing.status.value} subscription"
                )

            contract = Contract(
                contract_id=contract_id,
                contract_number=await tx.next_contract_number(start.year),
                member_id=request.member_id,
                plan_id=plan.plan_id,
                contract_type=contract_type,
                contract_term=contract_term,
                start_date=start,
                commitment_end_date=commitment_end,
                notice_period_days=notice_days,
                early_termination_fee_type=plan.early_termination_fee_type,
                early_termination_fee_value=plan.early_termination_fee_value,
                cooling_off_end_date=add_days(start, cooling_off_days),
                subscription_id=subscription_id,
                state=PendingSignatureState(),
            )
            if request.auto_activate:
                contract = activate_contract(contract, now)

            subscription = Subscription(
                subscription_id=subscription_id,
                member_id=request.member_id,
                plan_id=plan.plan_id,
                contract_id=contract_id,
                status=status,
                start_date=start,
                current_period_start=start,
                current_period_end=period_end,
                agreed_price=plan.price,
                billing_cycle=plan.billing_cycle,
                auto_renew=request.auto_renew,
                freeze_days_remaining=plan.freeze_days_allowance,
                classes_remaining=plan.classes_per_period,
                guest_passes_remaining=plan.guest_passes_per_period,
            )

            contract = await tx.create_contract(contract)
            subscription = await tx.create_subscription(subscription)

        logger.info(
            f"Enrolled member {request.member_id}: contract {contract.contract_number} "
            f"({contract.status.value}), subscription {subscription.subscription_id} ({subscription.status.value})"
        )

        await self._publish_event(
            MembershipEventType.CONTRACT_CREATED,
            {
                "contract_id": contract.contract_id,
                "contract_number": contract.contract_number,
                "member_id": contract.member_id,
                "plan_id": contract.plan_id,
                "subscription_id": subscription.subscription_id,
                "status": contract.status.value,
                "start_date": start,
            },
        )
        if contract.status == ContractStatus.ACTIVE:
            await self._publish_event(
                MembershipEventType.CONTRACT_ACTIVATED,
                {"contract_id": contract.contract_id, "member_id": contract.member_id, "activated_by": "auto"},
            )

        if plan.join_fee:
            await self._request_charge(subscription, plan.join_fee, "join_fee", contract.contract_id)
        if status == SubscriptionStatus.ACTIVE:
            await self._request_charge(subscription, subscription.agreed_price, "membership_period", contract.contract_id)

        return ContractEnrollmentResponse(contract=contract, subscription=subscription)

    async def get_contract(self, contract_id: str) -> Contract:
        return await self._require_contract(self.repository, contract_id)

    @retry_on_conflict
    async def approve(self, contract_id: str, staff_id: str) -> Contract:
        """Staff activation: PENDING_SIGNATURE -> ACTIVE only"""
        contract = await self._require_contract(self.repository, contract_id)

        async with self.repository.transaction(lock_subscription_id=contract.subscription_id) as tx:
            contract = await self._require_contract(tx, contract_id)
            now = self.now()
            contract = activate_contract(contract, now)
            contract = contract.model_copy(update={"approved_by": staff_id, "approved_at": now})
            contract = await tx.update_contract(contract)

        logger.info(f"Contract {contract_id} approved by {staff_id}")
        await self._publish_event(
            MembershipEventType.CONTRACT_ACTIVATED,
            {"contract_id": contract_id, "member_id": contract.member_id, "activated_by": staff_id},
        )
        return contract

    @retry_on_conflict
    async def sign(self, contract_id: str, signature: str) -> Contract:
        """Record the signature; activates a pending contract, no-op status-wise when already active"""
        if not signature:
            raise ValidationError("Signature is required")

        contract = await self._require_contract(self.repository, contract_id)

        async with self.repository.transaction(lock_subscription_id=contract.subscription_id) as tx:
            contract = await self._require_contract(tx, contract_id)
            if contract.status not in (ContractStatus.PENDING_SIGNATURE, ContractStatus.ACTIVE):
                raise InvalidStateTransitionError(
                    f"Contract {contract_id} cannot be signed in status {contract.status.value}",
                    current_status=contract.status.value,
                    target_status=ContractStatus.ACTIVE.value,
                )

            was_pending = contract.status == ContractStatus.PENDING_SIGNATURE
            if contract.signed_at is not None and not was_pending:
                return contract

            now = self.now()
            updates = {
                "signed_at": contract.signed_at or now,
                "signature_ref": contract.signature_ref or hashlib.sha256(signature.encode()).hexdigest(),
            }
            if was_pending:
                contract = activate_contract(contract, now)
            contract = await tx.update_contract(contract.model_copy(update=updates))

        logger.info(f"Contract {contract_id} signed (activated={was_pending})")
        await self._publish_event(
            MembershipEventType.CONTRACT_SIGNED,
            {"contract_id": contract_id, "member_id": contract.member_id, "signed_at": contract.signed_at},
        )
        if was_pending:
            await self._publish_event(
                MembershipEventType.CONTRACT_ACTIVATED,
                {"contract_id": contract_id, "member_id": contract.member_id, "activated_by": "signature"},
            )
        return contract


__all__ = [
    "ContractService",
    "activate_contract",
    "begin_notice_period",
    "withdraw_notice",
    "cancel_within_cooling_off",
    "finalize_notice",
    "complete_contract",
    "is_within_cooling_off",
    "cooling_off_days_remaining",
    "is_within_commitment",
    "commitment_months_remaining",
    "cancellation_dates",
    "early_termination_fee",
]

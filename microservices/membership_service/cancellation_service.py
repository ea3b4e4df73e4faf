"""
Cancellation & Retention Workflow

preview -> request -> notice period -> resolution, where resolution is one of
withdrawn, offer accepted, or effective (finalized by the daily sweep once the
effective date arrives). Cooling-off cancellations skip the notice period and
resolve immediately. Exit surveys and retention reporting live here too.

This component is the only writer of CancellationRequest and RetentionOffer
rows and the only path that moves a contract into or out of the notice period.
"""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from .contract_service import (
    cancel_within_cooling_off,
    cancellation_dates,
    commitment_months_remaining,
    cooling_off_days_remaining,
    early_termination_fee,
    finalize_notice,
    is_within_commitment,
    is_within_cooling_off,
    begin_notice_period,
    withdraw_notice,
)
from .events.models import MembershipEventType
from .freeze_service import FreezeService
from .models import (
    ActiveDiscount,
    CancelSubscriptionRequest,
    CancellationListResponse,
    CancellationPreview,
    CancellationReasonCategory,
    CancellationRequest,
    CancellationRequestStatus,
    CancellationResult,
    CancellationType,
    Contract,
    ContractStatus,
    ExitSurvey,
    ExitSurveyAnalytics,
    ExitSurveyRequest,
    MembershipPlan,
    RetentionOffer,
    RetentionOfferStatus,
    RetentionOfferType,
    RetentionRateResponse,
    ScheduledChangeStatus,
    Subscription,
    SubscriptionStatus,
    WaiveFeeRequest,
)
from .money import Money, add_days, add_months, percentage_of
from .plan_change_service import PlanChangeService
from .protocols import (
    BusinessRuleViolationError,
    InvalidStateTransitionError,
    MembershipRepositoryProtocol,
    NotFoundError,
    ValidationError,
)
from .retention_offers import generate_offers
from .service_base import MembershipComponent, new_id, retry_on_conflict
from .subscription_service import cancel_subscription, require_subscription_status

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN)
SAVED_STATUSES = [CancellationRequestStatus.OFFER_ACCEPTED, CancellationRequestStatus.WITHDRAWN]


class CancellationService(MembershipComponent):
    """Cancellation requests, retention offers, exit surveys"""

    def __init__(self, *args, freeze: FreezeService, plan_changes: PlanChangeService, **kwargs):
        super().__init__(*args, **kwargs)
        self.freeze = freeze
        self.plan_changes = plan_changes

    # ====================
    # Terms
    # ====================

    async def _contract_for(self, repo: MembershipRepositoryProtocol, subscription: Subscription) -> Contract:
        if not subscription.contract_id:
            raise NotFoundError("Contract for subscription", subscription.subscription_id)
        return await self._require_contract(repo, subscription.contract_id)

    def _cooling_off_refund(self, subscription: Subscription, plan: Optional[MembershipPlan]) -> Money:
        refund = subscription.agreed_price
        if plan and plan.join_fee and plan.join_fee.currency == refund.currency:
            refund = refund + plan.join_fee
        return refund.rounded()

    def _terms(
        self,
        contract: Contract,
        subscription: Subscription,
        plan: Optional[MembershipPlan],
        today: date,
    ) -> CancellationPreview:
        within_cooling_off = is_within_cooling_off(contract, today)
        if within_cooling_off:
            notice_end = None
            effective = today
            fee = Money.zero(subscription.agreed_price.currency)
            refund = self._cooling_off_refund(subscription, plan)
        else:
            notice_end, effective = cancellation_dates(contract, today)
            fee = early_termination_fee(contract, subscription.agreed_price, today)
            refund = None

        return CancellationPreview(
            contract_id=contract.contract_id,
            subscription_id=subscription.subscription_id,
            is_within_cooling_off=within_cooling_off,
            cooling_off_days_remaining=cooling_off_days_remaining(contract, today),
            is_within_commitment=is_within_commitment(contract, today),
            commitment_months_remaining=commitment_months_remaining(contract, today),
            notice_period_days=0 if within_cooling_off else contract.notice_period_days,
            notice_period_end_date=notice_end,
            effective_date=effective,
            early_termination_fee=fee,
            refund_amount=refund,
        )

    @staticmethod
    def _require_cancellable(contract: Contract, subscription: Subscription) -> None:
        require_subscription_status(subscription, CANCELLABLE_STATUSES, "cancel")
        if contract.status not in (ContractStatus.PENDING_SIGNATURE, ContractStatus.ACTIVE):
            raise InvalidStateTransitionError(
                f"Contract {contract.contract_id} cannot be cancelled in status {contract.status.value}",
                current_status=contract.status.value,
                target_status=ContractStatus.CANCELLED.value,
            )

    # ====================
    # Preview
    # ====================

    async def preview_cancellation(
        self,
        subscription_id: str,
        reason_category: CancellationReasonCategory = CancellationReasonCategory.OTHER,
    ) -> CancellationPreview:
        """Pure read: terms and candidate offers if the member cancelled today"""
        today = self.today()
        subscription = await self._require_subscription(self.repository, subscription_id)
        contract = await self._contract_for(self.repository, subscription)
        self._require_cancellable(contract, subscription)

        plan = await self.repository.get_plan(subscription.plan_id)
        preview = self._terms(contract, subscription, plan, today)
        if not preview.is_within_cooling_off:
            plans = await self.repository.list_active_plans()
            preview.retention_offers = generate_offers(
                reason_category, subscription, plans, today, self.now(), self.policy
            )
        return preview

    async def preview_for_member(
        self, member_id: str, reason_category: CancellationReasonCategory = CancellationReasonCategory.OTHER
    ) -> CancellationPreview:
        subscription = await self.subscription_for_member(member_id)
        return await self.preview_cancellation(subscription.subscription_id, reason_category)

    async def preview_for_contract(self, contract_id: str) -> CancellationPreview:
        contract = await self._require_contract(self.repository, contract_id)
        if not contract.subscription_id:
            raise NotFoundError("Subscription for contract", contract_id)
        return await self.preview_cancellation(contract.subscription_id)

    # ====================
    # Request
    # ====================

    @retry_on_conflict
    async def request_cancellation(
        self,
        subscription_id: str,
        request: CancelSubscriptionRequest,
        cancellation_type: Optional[CancellationType] = None,
    ) -> CancellationResult:
        """
        Open a cancellation.

        Without an explicit type the window decides: inside cooling-off the
        contract and subscription are cancelled now with zero fee; otherwise
        the contract enters its notice period and retention offers are issued.
        """
        today = self.today()
        now = self.now()
        offers: List[RetentionOffer] = []
        freeze_entry = None

        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            contract = await self._contract_for(tx, subscription)
            self._require_cancellable(contract, subscription)

            if await tx.get_open_cancellation_request(subscription_id):
                raise BusinessRuleViolationError(
                    f"Subscription {subscription_id} already has a pending cancellation request"
                )

            if cancellation_type is None:
                cancellation_type = (
                    CancellationType.WITHIN_COOLING_OFF
                    if is_within_cooling_off(contract, today)
                    else CancellationType.STANDARD
                )

            reason_text = request.reason_detail or request.reason_category.value

            if cancellation_type == CancellationType.WITHIN_COOLING_OFF:
                contract = await tx.update_contract(cancel_within_cooling_off(contract, now, today, reason_text))
                if subscription.status == SubscriptionStatus.FROZEN:
                    subscription, freeze_entry = await self.freeze.end_freeze_in_tx(tx, subscription, today)
                subscription = await tx.update_subscription(cancel_subscription(subscription, now, today))
                await self._drop_pending_plan_change(tx, subscription_id, "Subscription cancelled")

                cancellation = await tx.create_cancellation_request(CancellationRequest(
                    request_id=new_id("can"),
                    member_id=subscription.member_id,
                    subscription_id=subscription_id,
                    contract_id=contract.contract_id,
                    cancellation_type=CancellationType.WITHIN_COOLING_OFF,
                    reason_category=request.reason_category,
                    reason_detail=request.reason_detail,
                    status=CancellationRequestStatus.EFFECTIVE,
                    requested_at=now,
                    effective_date=today,
                    early_termination_fee=Money.zero(subscription.agreed_price.currency),
                    refund_amount=self._cooling_off_refund(subscription, await tx.get_plan(subscription.plan_id)),
                    resolved_at=now,
                    reactivation_eligible_until=add_days(today, self.policy.reactivation_window_days),
                ))
            else:
                if contract.status != ContractStatus.ACTIVE:
                    raise InvalidStateTransitionError(
                        f"Contract {contract.contract_id} must be active to enter its notice period",
                        current_status=contract.status.value,
                        target_status=ContractStatus.IN_NOTICE_PERIOD.value,
                    )
                notice_end, effective = cancellation_dates(contract, today)
                fee = early_termination_fee(contract, subscription.agreed_price, today)
                contract = await tx.update_contract(begin_notice_period(contract, now, notice_end, effective, reason_text))
                subscription = await tx.update_subscription(subscription.model_copy(update={
                    "cancellation_effective_date": effective,
                }))
                cancellation = await tx.create_cancellation_request(CancellationRequest(
                    request_id=new_id("can"),
                    member_id=subscription.member_id,
                    subscription_id=subscription_id,
                    contract_id=contract.contract_id,
                    cancellation_type=CancellationType.STANDARD,
                    reason_category=request.reason_category,
                    reason_detail=request.reason_detail,
                    status=CancellationRequestStatus.IN_NOTICE,
                    requested_at=now,
                    notice_period_end_date=notice_end,
                    effective_date=effective,
                    early_termination_fee=fee,
                ))
                plans = await tx.list_active_plans()
                offers = generate_offers(
                    request.reason_category, subscription, plans, today, now, self.policy, cancellation.request_id
                )
                if offers:
                    offers = await tx.create_retention_offers(offers)

        if cancellation.status == CancellationRequestStatus.EFFECTIVE:
            logger.info(f"Subscription {subscription_id} cancelled within cooling-off")
            if freeze_entry:
                await self.freeze.after_unfreeze(subscription, freeze_entry)
            if cancellation.refund_amount:
                await self._request_credit(
                    subscription, cancellation.refund_amount, "cooling_off_refund", cancellation.request_id
                )
            await self._announce_cancelled(contract, subscription, cancellation)
        else:
            logger.info(
                f"Contract {contract.contract_id} moved to in_notice_period, effective {cancellation.effective_date}, "
                f"{len(offers)} retention offers"
            )
            await self._publish_event(
                MembershipEventType.CONTRACT_CANCELLATION_REQUESTED,
                {
                    "contract_id": contract.contract_id,
                    "member_id": contract.member_id,
                    "effective_date": cancellation.effective_date,
                },
            )
            await self._publish_event(
                MembershipEventType.CANCELLATION_REQUESTED,
                {
                    "request_id": cancellation.request_id,
                    "subscription_id": subscription_id,
                    "member_id": subscription.member_id,
                    "reason_category": cancellation.reason_category.value,
                    "notice_period_end_date": cancellation.notice_period_end_date,
                    "effective_date": cancellation.effective_date,
                    "early_termination_fee": cancellation.early_termination_fee,
                    "offer_count": len(offers),
                },
            )

        return CancellationResult(
            request=cancellation,
            contract_status=contract.status,
            subscription_status=subscription.status,
            retention_offers=offers,
        )

    async def request_for_member(self, member_id: str, request: CancelSubscriptionRequest) -> CancellationResult:
        subscription = await self.subscription_for_member(member_id)
        return await self.request_cancellation(subscription.subscription_id, request)

    async def request_for_contract(
        self,
        contract_id: str,
        cancellation_type: CancellationType,
        reason: Optional[str] = None,
        reason_category: CancellationReasonCategory = CancellationReasonCategory.OTHER,
    ) -> Contract:
        contract = await self._require_contract(self.repository, contract_id)
        if not contract.subscription_id:
            raise NotFoundError("Subscription for contract", contract_id)
        await self.request_cancellation(
            contract.subscription_id,
            CancelSubscriptionRequest(reason_category=reason_category, reason_detail=reason),
            cancellation_type,
        )
        return await self._require_contract(self.repository, contract_id)

    # ====================
    # Resolution
    # ====================

    async def _drop_pending_plan_change(self, tx: MembershipRepositoryProtocol, subscription_id: str, reason: str) -> None:
        pending = await tx.get_pending_scheduled_change(subscription_id)
        if pending:
            await tx.update_scheduled_change(pending.model_copy(update={
                "status": ScheduledChangeStatus.CANCELLED,
                "cancellation_reason": reason,
                "cancelled_at": self.now(),
            }))

    async def _close_offers(
        self,
        tx: MembershipRepositoryProtocol,
        request_id: str,
        status: RetentionOfferStatus,
        keep_offer_id: Optional[str] = None,
    ) -> None:
        for offer in await tx.list_retention_offers(request_id):
            if offer.status == RetentionOfferStatus.PENDING and offer.offer_id != keep_offer_id:
                await tx.update_retention_offer(offer.model_copy(update={
                    "status": status,
                    "responded_at": self.now() if status == RetentionOfferStatus.DECLINED else None,
                }))

    async def _open_request(self, repo: MembershipRepositoryProtocol, subscription_id: str) -> CancellationRequest:
        request = await repo.get_open_cancellation_request(subscription_id)
        if not request:
            raise InvalidStateTransitionError(
                f"Subscription {subscription_id} has no pending cancellation",
                target_status=CancellationRequestStatus.WITHDRAWN.value,
            )
        return request

    async def _reopen_contract(self, tx: MembershipRepositoryProtocol, subscription: Subscription) -> Tuple[Contract, Subscription]:
        contract = await self._contract_for(tx, subscription)
        contract = await tx.update_contract(withdraw_notice(contract))
        subscription = await tx.update_subscription(subscription.model_copy(update={
            "cancellation_effective_date": None,
        }))
        return contract, subscription

    @retry_on_conflict
    async def withdraw(self, subscription_id: str) -> CancellationResult:
        """IN_NOTICE -> WITHDRAWN; contract back to ACTIVE"""
        now = self.now()
        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            subscription = await self._require_subscription(tx, subscription_id)
            cancellation = await self._open_request(tx, subscription_id)
            contract, subscription = await self._reopen_contract(tx, subscription)
            await self._close_offers(tx, cancellation.request_id, RetentionOfferStatus.EXPIRED)
            cancellation = await tx.update_cancellation_request(cancellation.model_copy(update={
                "status": CancellationRequestStatus.WITHDRAWN,
                "resolved_at": now,
            }))

        logger.info(f"Cancellation {cancellation.request_id} withdrawn, contract {contract.contract_id} active again")
        await self._publish_event(
            MembershipEventType.CONTRACT_CANCELLATION_WITHDRAWN,
            {"contract_id": contract.contract_id, "member_id": contract.member_id},
        )
        await self._publish_event(
            MembershipEventType.CANCELLATION_WITHDRAWN,
            {"request_id": cancellation.request_id, "subscription_id": subscription_id, "member_id": subscription.member_id},
        )
        return CancellationResult(
            request=cancellation, contract_status=contract.status, subscription_status=subscription.status
        )

    async def withdraw_for_member(self, member_id: str) -> CancellationResult:
        subscription = await self.subscription_for_member(member_id)
        return await self.withdraw(subscription.subscription_id)

    async def withdraw_for_contract(self, contract_id: str) -> Contract:
        contract = await self._require_contract(self.repository, contract_id)
        if contract.status != ContractStatus.IN_NOTICE_PERIOD or not contract.subscription_id:
            raise InvalidStateTransitionError(
                f"Contract {contract_id} is not in its notice period",
                current_status=contract.status.value,
                target_status=ContractStatus.ACTIVE.value,
            )
        await self.withdraw(contract.subscription_id)
        return await self._require_contract(self.repository, contract_id)

    async def _load_offer(self, offer_id: str, member_id: Optional[str]) -> Tuple[RetentionOffer, CancellationRequest]:
        offer = await self.repository.get_retention_offer(offer_id)
        if not offer or not offer.cancellation_request_id:
            raise NotFoundError("RetentionOffer", offer_id)
        request = await self._require_cancellation_request(self.repository, offer.cancellation_request_id)
        if member_id is not None and request.member_id != member_id:
            raise NotFoundError("RetentionOffer", offer_id)
        return offer, request

    async def _apply_offer(
        self, tx: MembershipRepositoryProtocol, subscription: Subscription, offer: RetentionOffer, today: date
    ):
        """Apply the offer's effect; returns (subscription, plan-change history or None)"""
        if offer.offer_type == RetentionOfferType.DISCOUNT:
            base = subscription.active_discount.original_price if subscription.active_discount else subscription.agreed_price
            discounted = base - percentage_of(base, offer.discount_percentage)
            subscription = await tx.update_subscription(subscription.model_copy(update={
                "agreed_price": discounted,
                "active_discount": ActiveDiscount(
                    original_price=base,
                    discount_percentage=offer.discount_percentage,
                    ends_on=add_months(subscription.current_period_start, offer.duration_months or 1),
                ),
            }))
            return subscription, None

        if offer.offer_type == RetentionOfferType.FREE_MONTHS:
            subscription = await tx.update_subscription(subscription.model_copy(update={
                "current_period_end": add_months(subscription.current_period_end, offer.duration_months or 1),
            }))
            return subscription, None

        if offer.offer_type == RetentionOfferType.PLAN_SWITCH:
            new_plan, change_type = await self.plan_changes.validate_target(
                tx, subscription, offer.alternative_plan_id
            )
            return await self.plan_changes.apply_immediate_change_in_tx(
                tx, subscription, new_plan, change_type, today, initiated_by_member=True
            )

        # PAUSE: free days on top of the balance, consumed by an immediate freeze
        days = offer.duration_days or self.policy.pause_offer_days
        subscription = await self.freeze.grant_in_tx(tx, subscription, days, today, reason="Retention pause offer")
        if subscription.status != SubscriptionStatus.FROZEN:
            subscription = await self.freeze.freeze_in_tx(
                tx, subscription, today, add_days(today, days), reason="Retention pause offer"
            )
        return subscription, None

    @retry_on_conflict
    async def accept_offer(self, offer_id: str, member_id: Optional[str] = None) -> CancellationResult:
        """Accepting an offer reverses the cancellation and applies the incentive"""
        offer, cancellation = await self._load_offer(offer_id, member_id)
        subscription_id = cancellation.subscription_id
        today = self.today()
        now = self.now()

        async with self.repository.transaction(lock_subscription_id=subscription_id) as tx:
            offer = await tx.get_retention_offer(offer_id)
            cancellation = await self._require_cancellation_request(tx, cancellation.request_id)
            if not cancellation.is_open:
                raise InvalidStateTransitionError(
                    f"Cancellation {cancellation.request_id} is already {cancellation.status.value}",
                    current_status=cancellation.status.value,
                    target_status=CancellationRequestStatus.OFFER_ACCEPTED.value,
                )
            if offer.status != RetentionOfferStatus.PENDING:
                raise InvalidStateTransitionError(
                    f"Offer {offer_id} is {offer.status.value}",
                    current_status=offer.status.value,
                    target_status=RetentionOfferStatus.ACCEPTED.value,
                )
            if offer.expires_at < now:
                raise BusinessRuleViolationError(f"Offer {offer_id} expired at {offer.expires_at}")

            subscription = await self._require_subscription(tx, subscription_id)
            contract, subscription = await self._reopen_contract(tx, subscription)
            subscription, history = await self._apply_offer(tx, subscription, offer, today)

            offer = await tx.update_retention_offer(offer.model_copy(update={
                "status": RetentionOfferStatus.ACCEPTED,
                "responded_at": now,
            }))
            await self._close_offers(tx, cancellation.request_id, RetentionOfferStatus.DECLINED, keep_offer_id=offer_id)
            cancellation = await tx.update_cancellation_request(cancellation.model_copy(update={
                "status": CancellationRequestStatus.OFFER_ACCEPTED,
                "accepted_offer_id": offer_id,
                "resolved_at": now,
            }))

        logger.info(
            f"Offer {offer_id} ({offer.offer_type.value}) accepted, cancellation {cancellation.request_id} reversed"
        )
        if history:
            await self.plan_changes.settle_immediate_change(subscription, history)
        await self._publish_event(
            MembershipEventType.RETENTION_OFFER_ACCEPTED,
            {
                "offer_id": offer_id,
                "offer_type": offer.offer_type.value,
                "request_id": cancellation.request_id,
                "subscription_id": subscription_id,
                "member_id": subscription.member_id,
            },
        )
        await self._publish_event(
            MembershipEventType.CONTRACT_CANCELLATION_WITHDRAWN,
            {"contract_id": contract.contract_id, "member_id": contract.member_id, "offer_id": offer_id},
        )
        return CancellationResult(
            request=cancellation,
            contract_status=contract.status,
            subscription_status=subscription.status,
            retention_offers=[offer],
        )

    @retry_on_conflict
    async def decline_offer(self, offer_id: str, member_id: Optional[str] = None) -> RetentionOffer:
        offer, cancellation = await self._load_offer(offer_id, member_id)

        async with self.repository.transaction(lock_subscription_id=cancellation.subscription_id) as tx:
            offer = await tx.get_retention_offer(offer_id)
            if offer.status == RetentionOfferStatus.DECLINED:
                return offer
            if offer.status != RetentionOfferStatus.PENDING:
                raise InvalidStateTransitionError(
                    f"Offer {offer_id} is {offer.status.value}",
                    current_status=offer.status.value,
                    target_status=RetentionOfferStatus.DECLINED.value,
                )
            offer = await tx.update_retention_offer(offer.model_copy(update={
                "status": RetentionOfferStatus.DECLINED,
                "responded_at": self.now(),
            }))

        logger.info(f"Offer {offer_id} declined")
        return offer

    @retry_on_conflict
    async def finalize(
        self, request_id: str, force: bool = False, today: Optional[date] = None
    ) -> CancellationResult:
        """
        IN_NOTICE -> EFFECTIVE once the effective date has come.

        Re-invoking on an EFFECTIVE request returns it unchanged so a retrying
        scheduler is harmless. `force` lets staff finalize before the date.
        """
        cancellation = await self._require_cancellation_request(self.repository, request_id)
        today = today or self.today()
        now = self.now()
        freeze_entry = None

        async with self.repository.transaction(lock_subscription_id=cancellation.subscription_id) as tx:
            cancellation = await self._require_cancellation_request(tx, request_id)
            subscription = await self._require_subscription(tx, cancellation.subscription_id)
            contract = await self._contract_for(tx, subscription)

            if cancellation.status == CancellationRequestStatus.EFFECTIVE:
                return CancellationResult(
                    request=cancellation, contract_status=contract.status, subscription_status=subscription.status
                )
            if not cancellation.is_open:
                raise InvalidStateTransitionError(
                    f"Cancellation {request_id} was {cancellation.status.value}",
                    current_status=cancellation.status.value,
                    target_status=CancellationRequestStatus.EFFECTIVE.value,
                )
            if cancellation.effective_date > today and not force:
                raise BusinessRuleViolationError(
                    f"Cancellation {request_id} takes effect on {cancellation.effective_date}"
                )

            contract = await tx.update_contract(finalize_notice(contract, now))
            if not subscription.is_terminal:
                if subscription.status == SubscriptionStatus.FROZEN:
                    subscription, freeze_entry = await self.freeze.end_freeze_in_tx(tx, subscription, today)
                subscription = await tx.update_subscription(
                    cancel_subscription(subscription, now, cancellation.effective_date)
                )
            await self._drop_pending_plan_change(tx, subscription.subscription_id, "Subscription cancelled")
            await self._close_offers(tx, request_id, RetentionOfferStatus.EXPIRED)
            cancellation = await tx.update_cancellation_request(cancellation.model_copy(update={
                "status": CancellationRequestStatus.EFFECTIVE,
                "resolved_at": now,
                "reactivation_eligible_until": add_days(
                    cancellation.effective_date, self.policy.reactivation_window_days
                ),
            }))

        logger.info(f"Cancellation {request_id} effective, contract {contract.contract_id} cancelled")
        if freeze_entry:
            await self.freeze.after_unfreeze(subscription, freeze_entry)
        fee = cancellation.early_termination_fee
        if fee and not cancellation.fee_waived:
            await self._request_charge(subscription, fee, "early_termination_fee", request_id)
        await self._announce_cancelled(contract, subscription, cancellation)
        return CancellationResult(
            request=cancellation, contract_status=contract.status, subscription_status=subscription.status
        )

    async def _announce_cancelled(
        self, contract: Contract, subscription: Subscription, cancellation: CancellationRequest
    ) -> None:
        await self._publish_event(
            MembershipEventType.CONTRACT_CANCELLED,
            {
                "contract_id": contract.contract_id,
                "member_id": contract.member_id,
                "cancellation_type": cancellation.cancellation_type.value,
                "effective_date": cancellation.effective_date,
            },
        )
        await self._publish_event(
            MembershipEventType.SUBSCRIPTION_CANCELLED,
            {
                "subscription_id": subscription.subscription_id,
                "member_id": subscription.member_id,
                "cancellation_effective_date": subscription.cancellation_effective_date,
            },
        )
        await self._publish_event(
            MembershipEventType.CANCELLATION_EFFECTIVE,
            {
                "request_id": cancellation.request_id,
                "subscription_id": subscription.subscription_id,
                "member_id": subscription.member_id,
                "early_termination_fee": cancellation.early_termination_fee,
                "fee_waived": cancellation.fee_waived,
                "refund_amount": cancellation.refund_amount,
                "reactivation_eligible_until": cancellation.reactivation_eligible_until,
            },
        )

    # ====================
    # Staff actions
    # ====================

    @retry_on_conflict
    async def waive_fee(self, request_id: str, request: WaiveFeeRequest) -> CancellationRequest:
        """Waive the early-termination fee; dates and status are untouched"""
        cancellation = await self._require_cancellation_request(self.repository, request_id)

        async with self.repository.transaction(lock_subscription_id=cancellation.subscription_id) as tx:
            cancellation = await self._require_cancellation_request(tx, request_id)
            already_charged = (
                cancellation.status == CancellationRequestStatus.EFFECTIVE
                and not cancellation.fee_waived
                and cancellation.early_termination_fee is not None
            )
            cancellation = await tx.update_cancellation_request(cancellation.model_copy(update={
                "fee_waived": True,
                "fee_waived_by": request.waived_by,
                "fee_waived_reason": request.reason,
                "fee_waived_at": self.now(),
            }))
            subscription = await self._require_subscription(tx, cancellation.subscription_id)

        logger.info(f"Early-termination fee of cancellation {request_id} waived by {request.waived_by}")
        if already_charged:
            await self._request_credit(
                subscription, cancellation.early_termination_fee, "early_termination_fee_waived", request_id
            )
        await self._publish_event(
            MembershipEventType.CANCELLATION_FEE_WAIVED,
            {
                "request_id": request_id,
                "subscription_id": cancellation.subscription_id,
                "waived_by": request.waived_by,
                "reason": request.reason,
                "early_termination_fee": cancellation.early_termination_fee,
            },
        )
        return cancellation

    async def list_cancellations(
        self,
        status: Optional[CancellationRequestStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> CancellationListResponse:
        if page < 1 or page_size < 1:
            raise ValidationError("page and page_size must be positive")
        items = await self.repository.list_cancellation_requests(
            status=status, limit=page_size, offset=(page - 1) * page_size
        )
        total = await self.repository.count_cancellation_requests(status=status)
        return CancellationListResponse(items=items, total=total, page=page, page_size=page_size)

    async def list_pending(self, page: int = 1, page_size: int = 50) -> CancellationListResponse:
        return await self.list_cancellations(CancellationRequestStatus.IN_NOTICE, page, page_size)

    async def get_retention_rate(self, start_date: date, end_date: date) -> RetentionRateResponse:
        """saved / (saved + effective) over requests resolved in [start, end]"""
        if end_date < start_date:
            raise ValidationError(f"Reporting window {start_date}..{end_date} is empty")
        saved = await self.repository.count_resolved_cancellations(SAVED_STATUSES, start_date, end_date)
        effective = await self.repository.count_resolved_cancellations(
            [CancellationRequestStatus.EFFECTIVE], start_date, end_date
        )
        total = saved + effective
        rate = Decimal(saved) / Decimal(total) if total else Decimal(0)
        return RetentionRateResponse(
            start_date=start_date,
            end_date=end_date,
            members_saved=saved,
            effective_cancellations=effective,
            retention_rate=rate.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
        )

    # ====================
    # Exit surveys
    # ====================

    async def submit_exit_survey(self, member_id: str, request: ExitSurveyRequest) -> ExitSurvey:
        """One survey per subscription; not gated on workflow state"""
        subscription = await self.subscription_for_member(member_id)
        if await self.repository.get_exit_survey_for_subscription(subscription.subscription_id):
            raise BusinessRuleViolationError(
                f"Exit survey already submitted for subscription {subscription.subscription_id}"
            )
        latest = await self.repository.get_latest_cancellation_request(subscription.subscription_id)

        survey = await self.repository.create_exit_survey(ExitSurvey(
            survey_id=new_id("svy"),
            member_id=member_id,
            subscription_id=subscription.subscription_id,
            cancellation_request_id=latest.request_id if latest else None,
            submitted_at=self.now(),
            **request.model_dump(),
        ))

        logger.info(f"Exit survey {survey.survey_id} submitted for subscription {subscription.subscription_id}")
        await self._publish_event(
            MembershipEventType.EXIT_SURVEY_SUBMITTED,
            {
                "survey_id": survey.survey_id,
                "member_id": member_id,
                "subscription_id": subscription.subscription_id,
                "reason_category": survey.reason_category.value,
                "nps_score": survey.nps_score,
            },
        )
        return survey

    async def get_exit_survey_analytics(self) -> ExitSurveyAnalytics:
        surveys = await self.repository.list_exit_surveys()
        analytics = ExitSurveyAnalytics(total_surveys=len(surveys))
        for survey in surveys:
            key = survey.reason_category.value
            analytics.by_reason[key] = analytics.by_reason.get(key, 0) + 1
            if survey.would_return:
                analytics.would_return_count += 1

        two_places = Decimal("0.01")
        scores = [s.nps_score for s in surveys if s.nps_score is not None]
        if scores:
            analytics.promoters = sum(1 for s in scores if s >= 9)
            analytics.passives = sum(1 for s in scores if 7 <= s <= 8)
            analytics.detractors = sum(1 for s in scores if s <= 6)
            analytics.average_nps = (Decimal(sum(scores)) / len(scores)).quantize(two_places, ROUND_HALF_UP)
            analytics.nps = (
                Decimal(analytics.promoters - analytics.detractors) * 100 / len(scores)
            ).quantize(two_places, ROUND_HALF_UP)

        ratings = [s.overall_satisfaction for s in surveys if s.overall_satisfaction is not None]
        if ratings:
            analytics.average_satisfaction = (Decimal(sum(ratings)) / len(ratings)).quantize(
                two_places, ROUND_HALF_UP
            )
        return analytics


__all__ = ["CancellationService"]

"""
In-memory Membership Repository

Implements MembershipRepositoryProtocol over dicts so unit and component
tests exercise the real service logic without PostgreSQL. Mirrors the
database's guarantees that the services depend on: optimistic versions,
the partial unique indexes and transaction rollback.
"""

import copy
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from microservices.membership_service.models import (
    CancellationRequest,
    CancellationRequestStatus,
    Contract,
    ExitSurvey,
    FreezeHistory,
    MembershipPlan,
    PlanChangeHistory,
    RetentionOffer,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    Subscription,
    SubscriptionStatus,
)
from microservices.membership_service.protocols import (
    BusinessRuleViolationError,
    ConcurrentModificationError,
    NotFoundError,
)

LIVE_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN)


class InMemoryMembershipRepository:
    """Dict-backed repository for tests"""

    def __init__(self, plans: Optional[List[MembershipPlan]] = None):
        self.plans: Dict[str, MembershipPlan] = {}
        self.contracts: Dict[str, Contract] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.scheduled_changes: Dict[str, ScheduledPlanChange] = {}
        self.plan_change_history: List[PlanChangeHistory] = []
        self.cancellations: Dict[str, CancellationRequest] = {}
        self.offers: Dict[str, RetentionOffer] = {}
        self.freeze_history: List[FreezeHistory] = []
        self.surveys: Dict[str, ExitSurvey] = {}
        self.contract_sequences: Dict[int, int] = {}
        self.healthy = True
        self._in_transaction = False
        self._seq = 0
        self._order: Dict[str, int] = {}
        for plan in plans or []:
            self.seed_plan(plan)

    def seed_plan(self, plan: MembershipPlan) -> MembershipPlan:
        self.plans[plan.plan_id] = plan
        return plan

    def seed_plans(self, *plans: MembershipPlan) -> None:
        for plan in plans:
            self.seed_plan(plan)

    def _stamp(self, key: str) -> datetime:
        self._seq += 1
        self._order[key] = self._seq
        return datetime.now(timezone.utc)

    def _ordered(self, items, key_attr: str, reverse: bool = False):
        return sorted(items, key=lambda i: self._order.get(getattr(i, key_attr), 0), reverse=reverse)

    # ====================
    # Lifecycle
    # ====================

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return self.healthy

    @asynccontextmanager
    async def transaction(self, lock_subscription_id: Optional[str] = None):
        if self._in_transaction:
            yield self
            return

        snapshot = copy.deepcopy(self.__dict__)
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self.__dict__.update(snapshot)
            raise
        finally:
            self._in_transaction = False

    # ====================
    # Plans
    # ====================

    async def get_plan(self, plan_id: str) -> Optional[MembershipPlan]:
        return self.plans.get(plan_id)

    async def list_active_plans(self) -> List[MembershipPlan]:
        return sorted((p for p in self.plans.values() if p.is_active), key=lambda p: p.price.amount)

    # ====================
    # Contracts
    # ====================

    async def next_contract_number(self, year: int) -> str:
        value = self.contract_sequences.get(year, 0) + 1
        self.contract_sequences[year] = value
        return f"GYM-{year}-{value:06d}"

    async def create_contract(self, contract: Contract) -> Contract:
        if contract.contract_id in self.contracts:
            raise BusinessRuleViolationError(f"Contract {contract.contract_id} already exists")
        stored = contract.model_copy(update={"created_at": self._stamp(contract.contract_id)})
        self.contracts[contract.contract_id] = stored
        return stored

    async def get_contract(self, contract_id: str) -> Optional[Contract]:
        return self.contracts.get(contract_id)

    async def update_contract(self, contract: Contract) -> Contract:
        current = self.contracts.get(contract.contract_id)
        if current is None:
            raise NotFoundError("Contract", contract.contract_id)
        if current.version != contract.version:
            raise ConcurrentModificationError(f"Contract {contract.contract_id} was modified concurrently")
        stored = contract.model_copy(update={
            "version": contract.version + 1,
            "updated_at": datetime.now(timezone.utc),
        })
        self.contracts[contract.contract_id] = stored
        return stored

    # ====================
    # Subscriptions
    # ====================

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        if subscription.status in LIVE_STATUSES:
            for existing in self.subscriptions.values():
                if existing.member_id == subscription.member_id and existing.status in LIVE_STATUSES:
                    raise BusinessRuleViolationError(
                        f"Member {subscription.member_id} already has a live subscription"
                    )
        stored = subscription.model_copy(update={"created_at": self._stamp(subscription.subscription_id)})
        self.subscriptions[subscription.subscription_id] = stored
        return stored

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self.subscriptions.get(subscription_id)

    async def get_current_subscription_for_member(self, member_id: str) -> Optional[Subscription]:
        owned = [s for s in self.subscriptions.values() if s.member_id == member_id]
        if not owned:
            return None
        live = [s for s in owned if s.status in LIVE_STATUSES]
        return self._ordered(live or owned, "subscription_id", reverse=True)[0]

    async def update_subscription(self, subscription: Subscription) -> Subscription:
        current = self.subscriptions.get(subscription.subscription_id)
        if current is None:
            raise NotFoundError("Subscription", subscription.subscription_id)
        if current.version != subscription.version:
            raise ConcurrentModificationError(
                f"Subscription {subscription.subscription_id} was modified concurrently"
            )
        stored = subscription.model_copy(update={
            "version": subscription.version + 1,
            "updated_at": datetime.now(timezone.utc),
        })
        self.subscriptions[subscription.subscription_id] = stored
        return stored

    async def list_subscriptions_due_for_period_end(self, today: date) -> List[Subscription]:
        due = [
            s for s in self.subscriptions.values()
            if s.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE) and s.current_period_end < today
        ]
        return sorted(due, key=lambda s: s.current_period_end)

    async def list_frozen_subscriptions_due(self, today: date) -> List[Subscription]:
        due = [
            s for s in self.subscriptions.values()
            if s.status == SubscriptionStatus.FROZEN
            and s.active_freeze is not None
            and s.active_freeze.planned_end_date is not None
            and s.active_freeze.planned_end_date <= today
        ]
        return sorted(due, key=lambda s: s.active_freeze.planned_end_date)

    # ====================
    # Plan changes
    # ====================

    async def create_scheduled_change(self, change: ScheduledPlanChange) -> ScheduledPlanChange:
        if change.status == ScheduledChangeStatus.PENDING and await self.get_pending_scheduled_change(
            change.subscription_id
        ):
            raise BusinessRuleViolationError(
                f"Subscription {change.subscription_id} already has a pending plan change"
            )
        stored = change.model_copy(update={"created_at": self._stamp(change.change_id)})
        self.scheduled_changes[change.change_id] = stored
        return stored

    async def get_scheduled_change(self, change_id: str) -> Optional[ScheduledPlanChange]:
        return self.scheduled_changes.get(change_id)

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        for change in self.scheduled_changes.values():
            if change.subscription_id == subscription_id and change.status == ScheduledChangeStatus.PENDING:
                return change
        return None

    async def update_scheduled_change(self, change: ScheduledPlanChange) -> ScheduledPlanChange:
        if change.change_id not in self.scheduled_changes:
            raise NotFoundError("ScheduledPlanChange", change.change_id)
        self.scheduled_changes[change.change_id] = change
        return change

    async def list_due_scheduled_changes(self, today: date) -> List[ScheduledPlanChange]:
        due = [
            c for c in self.scheduled_changes.values()
            if c.status == ScheduledChangeStatus.PENDING and c.scheduled_date <= today
        ]
        return sorted(due, key=lambda c: c.scheduled_date)

    async def create_plan_change_history(self, entry: PlanChangeHistory) -> PlanChangeHistory:
        stored = entry.model_copy(update={"created_at": self._stamp(entry.history_id)})
        self.plan_change_history.append(stored)
        return stored

    async def list_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        entries = [h for h in self.plan_change_history if h.subscription_id == subscription_id]
        return self._ordered(entries, "history_id", reverse=True)

    # ====================
    # Cancellation requests
    # ====================

    async def create_cancellation_request(self, request: CancellationRequest) -> CancellationRequest:
        if request.is_open and await self.get_open_cancellation_request(request.subscription_id):
            raise BusinessRuleViolationError(
                f"Subscription {request.subscription_id} already has an open cancellation request"
            )
        stored = request.model_copy(update={"created_at": self._stamp(request.request_id)})
        self.cancellations[request.request_id] = stored
        return stored

    async def get_cancellation_request(self, request_id: str) -> Optional[CancellationRequest]:
        return self.cancellations.get(request_id)

    async def get_open_cancellation_request(self, subscription_id: str) -> Optional[CancellationRequest]:
        for request in self.cancellations.values():
            if request.subscription_id == subscription_id and request.is_open:
                return request
        return None

    async def get_latest_cancellation_request(self, subscription_id: str) -> Optional[CancellationRequest]:
        owned = [r for r in self.cancellations.values() if r.subscription_id == subscription_id]
        if not owned:
            return None
        return self._ordered(owned, "request_id", reverse=True)[0]

    async def update_cancellation_request(self, request: CancellationRequest) -> CancellationRequest:
        current = self.cancellations.get(request.request_id)
        if current is None:
            raise NotFoundError("CancellationRequest", request.request_id)
        if current.version != request.version:
            raise ConcurrentModificationError(
                f"Cancellation request {request.request_id} was modified concurrently"
            )
        stored = request.model_copy(update={
            "version": request.version + 1,
            "updated_at": datetime.now(timezone.utc),
        })
        self.cancellations[request.request_id] = stored
        return stored

    def _filter_cancellations(self, status: Optional[CancellationRequestStatus]) -> List[CancellationRequest]:
        requests = [r for r in self.cancellations.values() if status is None or r.status == status]
        return self._ordered(requests, "request_id", reverse=True)

    async def list_cancellation_requests(
        self,
        status: Optional[CancellationRequestStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CancellationRequest]:
        return self._filter_cancellations(status)[offset:offset + limit]

    async def count_cancellation_requests(self, status: Optional[CancellationRequestStatus] = None) -> int:
        return len(self._filter_cancellations(status))

    async def list_due_cancellations(self, today: date) -> List[CancellationRequest]:
        due = [r for r in self.cancellations.values() if r.is_open and r.effective_date <= today]
        return sorted(due, key=lambda r: r.effective_date)

    async def count_resolved_cancellations(
        self, statuses: List[CancellationRequestStatus], start: date, end: date
    ) -> int:
        return sum(
            1 for r in self.cancellations.values()
            if r.status in statuses and r.resolved_at is not None and start <= r.resolved_at.date() <= end
        )

    # ====================
    # Retention offers
    # ====================

    async def create_retention_offers(self, offers: List[RetentionOffer]) -> List[RetentionOffer]:
        stored = []
        for offer in offers:
            saved = offer.model_copy(update={"created_at": self._stamp(offer.offer_id)})
            self.offers[offer.offer_id] = saved
            stored.append(saved)
        return stored

    async def get_retention_offer(self, offer_id: str) -> Optional[RetentionOffer]:
        return self.offers.get(offer_id)

    async def list_retention_offers(self, cancellation_request_id: str) -> List[RetentionOffer]:
        offers = [o for o in self.offers.values() if o.cancellation_request_id == cancellation_request_id]
        return sorted(offers, key=lambda o: o.priority)

    async def update_retention_offer(self, offer: RetentionOffer) -> RetentionOffer:
        if offer.offer_id not in self.offers:
            raise NotFoundError("RetentionOffer", offer.offer_id)
        self.offers[offer.offer_id] = offer
        return offer

    # ====================
    # Freeze history
    # ====================

    async def add_freeze_history(self, entry: FreezeHistory) -> FreezeHistory:
        stored = entry.model_copy(update={"created_at": self._stamp(entry.entry_id)})
        self.freeze_history.append(stored)
        return stored

    async def list_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        return self._ordered(
            [e for e in self.freeze_history if e.subscription_id == subscription_id], "entry_id"
        )

    # ====================
    # Exit surveys
    # ====================

    async def create_exit_survey(self, survey: ExitSurvey) -> ExitSurvey:
        if await self.get_exit_survey_for_subscription(survey.subscription_id):
            raise BusinessRuleViolationError(
                f"Exit survey already submitted for subscription {survey.subscription_id}"
            )
        stored = survey.model_copy(update={
            "submitted_at": survey.submitted_at or self._stamp(survey.survey_id),
        })
        self.surveys[survey.survey_id] = stored
        return stored

    async def get_exit_survey_for_subscription(self, subscription_id: str) -> Optional[ExitSurvey]:
        for survey in self.surveys.values():
            if survey.subscription_id == subscription_id:
                return survey
        return None

    async def list_exit_surveys(self) -> List[ExitSurvey]:
        return self._ordered(list(self.surveys.values()), "survey_id")


__all__ = ["InMemoryMembershipRepository"]

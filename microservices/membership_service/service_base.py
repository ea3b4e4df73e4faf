"""
Membership Service Component Base

Shared plumbing for the lifecycle components: injected collaborators, the
business clock, entity lookups inside a transaction, conflict retry and
post-commit side effects (events and invoice requests).
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt

from .events.models import MembershipEventType
from .events.publishers import publish_membership_event
from .models import CancellationRequest, Contract, MembershipPlan, Subscription
from .money import Money
from .policy import MembershipPolicy
from .protocols import (
    ConcurrentModificationError,
    EventBusProtocol,
    InvoiceClientProtocol,
    MembershipRepositoryProtocol,
    NotFoundError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], date]

# One automatic retry on optimistic-lock conflict, then surface the error
retry_on_conflict = retry(
    retry=retry_if_exception_type(ConcurrentModificationError),
    stop=stop_after_attempt(2),
    reraise=True,
)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class MembershipComponent:
    """Base class for lifecycle components"""

    def __init__(
        self,
        repository: MembershipRepositoryProtocol,
        clock: Clock,
        policy: Optional[MembershipPolicy] = None,
        event_bus: Optional[EventBusProtocol] = None,
        invoice_client: Optional[InvoiceClientProtocol] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.policy = policy or MembershipPolicy()
        self.event_bus = event_bus
        self.invoice_client = invoice_client

    def today(self) -> date:
        return self.clock()

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    # ====================
    # Lookups
    # ====================

    @staticmethod
    async def _require_plan(repo: MembershipRepositoryProtocol, plan_id: str) -> MembershipPlan:
        plan = await repo.get_plan(plan_id)
        if not plan:
            raise NotFoundError("Plan", plan_id)
        return plan

    @staticmethod
    async def _require_contract(repo: MembershipRepositoryProtocol, contract_id: str) -> Contract:
        contract = await repo.get_contract(contract_id)
        if not contract:
            raise NotFoundError("Contract", contract_id)
        return contract

    @staticmethod
    async def _require_subscription(repo: MembershipRepositoryProtocol, subscription_id: str) -> Subscription:
        subscription = await repo.get_subscription(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription", subscription_id)
        return subscription

    @staticmethod
    async def _require_cancellation_request(
        repo: MembershipRepositoryProtocol, request_id: str
    ) -> CancellationRequest:
        request = await repo.get_cancellation_request(request_id)
        if not request:
            raise NotFoundError("CancellationRequest", request_id)
        return request

    async def subscription_for_member(self, member_id: str) -> Subscription:
        subscription = await self.repository.get_current_subscription_for_member(member_id)
        if not subscription:
            raise NotFoundError("Subscription for member", member_id)
        return subscription

    # ====================
    # Side effects (after commit)
    # ====================

    async def _publish_event(self, event_type: MembershipEventType, data: Dict[str, Any]) -> None:
        await publish_membership_event(self.event_bus, event_type, data)

    async def _request_charge(
        self, subscription: Subscription, amount: Money, reason: str, reference_id: Optional[str] = None
    ) -> None:
        if not self.invoice_client or not amount.is_positive:
            return
        try:
            await self.invoice_client.request_charge(
                subscription.member_id, subscription.subscription_id, amount, reason, reference_id
            )
        except Exception as e:
            logger.warning(f"Charge request {reason} for {subscription.subscription_id} failed: {e}")

    async def _request_credit(
        self, subscription: Subscription, amount: Money, reason: str, reference_id: Optional[str] = None
    ) -> None:
        if not self.invoice_client or not amount.is_positive:
            return
        try:
            await self.invoice_client.request_credit(
                subscription.member_id, subscription.subscription_id, amount, reason, reference_id
            )
        except Exception as e:
            logger.warning(f"Credit request {reason} for {subscription.subscription_id} failed: {e}")


__all__ = ["MembershipComponent", "Clock", "retry_on_conflict", "new_id"]

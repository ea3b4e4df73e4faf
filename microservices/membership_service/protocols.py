"""
Membership Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import date
from typing import Any, AsyncContextManager, List, Optional, Protocol

from .money import Money
from .models import (
    CancellationRequest,
    CancellationRequestStatus,
    Contract,
    ExitSurvey,
    FreezeHistory,
    MembershipPlan,
    PlanChangeHistory,
    RetentionOffer,
    ScheduledPlanChange,
    Subscription,
)


# ====================
# Repository Protocol
# ====================


class MembershipRepositoryProtocol(Protocol):
    """
    Protocol for membership data repository.

    Writes made through the object yielded by transaction() land atomically;
    an exception raised inside the block discards all of them.
    update_* methods compare the entity's version with the stored one and
    raise ConcurrentModificationError on mismatch. Inserts violating a
    uniqueness rule raise BusinessRuleViolationError.
    """

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    def transaction(
        self, lock_subscription_id: Optional[str] = None
    ) -> AsyncContextManager["MembershipRepositoryProtocol"]:
        """Open a transaction, optionally serializing on one subscription"""
        ...

    # Plans
    async def get_plan(self, plan_id: str) -> Optional[MembershipPlan]:
        ...

    async def list_active_plans(self) -> List[MembershipPlan]:
        ...

    # Contracts
    async def next_contract_number(self, year: int) -> str:
        ...

    async def create_contract(self, contract: Contract) -> Contract:
        ...

    async def get_contract(self, contract_id: str) -> Optional[Contract]:
        ...

    async def update_contract(self, contract: Contract) -> Contract:
        ...

    # Subscriptions
    async def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        ...

    async def get_current_subscription_for_member(self, member_id: str) -> Optional[Subscription]:
        """Non-terminal subscription of the member, else the most recent one"""
        ...

    async def update_subscription(self, subscription: Subscription) -> Subscription:
        ...

    async def list_subscriptions_due_for_period_end(self, today: date) -> List[Subscription]:
        """TRIAL/ACTIVE subscriptions whose current period ended before today"""
        ...

    async def list_frozen_subscriptions_due(self, today: date) -> List[Subscription]:
        """FROZEN subscriptions whose planned freeze end is on or before today"""
        ...

    # Scheduled plan changes
    async def create_scheduled_change(self, change: ScheduledPlanChange) -> ScheduledPlanChange:
        ...

    async def get_scheduled_change(self, change_id: str) -> Optional[ScheduledPlanChange]:
        ...

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        ...

    async def update_scheduled_change(self, change: ScheduledPlanChange) -> ScheduledPlanChange:
        ...

    async def list_due_scheduled_changes(self, today: date) -> List[ScheduledPlanChange]:
        ...

    # Plan change history
    async def create_plan_change_history(self, entry: PlanChangeHistory) -> PlanChangeHistory:
        ...

    async def list_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        ...

    # Cancellation requests
    async def create_cancellation_request(self, request: CancellationRequest) -> CancellationRequest:
        ...

    async def get_cancellation_request(self, request_id: str) -> Optional[CancellationRequest]:
        ...

    async def get_open_cancellation_request(self, subscription_id: str) -> Optional[CancellationRequest]:
        ...

    async def get_latest_cancellation_request(self, subscription_id: str) -> Optional[CancellationRequest]:
        ...

    async def update_cancellation_request(self, request: CancellationRequest) -> CancellationRequest:
        ...

    async def list_cancellation_requests(
        self,
        status: Optional[CancellationRequestStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CancellationRequest]:
        ...

    async def count_cancellation_requests(self, status: Optional[CancellationRequestStatus] = None) -> int:
        ...

    async def list_due_cancellations(self, today: date) -> List[CancellationRequest]:
        ...

    async def count_resolved_cancellations(
        self, statuses: List[CancellationRequestStatus], start: date, end: date
    ) -> int:
        ...

    # Retention offers
    async def create_retention_offers(self, offers: List[RetentionOffer]) -> List[RetentionOffer]:
        ...

    async def get_retention_offer(self, offer_id: str) -> Optional[RetentionOffer]:
        ...

    async def list_retention_offers(self, cancellation_request_id: str) -> List[RetentionOffer]:
        ...

    async def update_retention_offer(self, offer: RetentionOffer) -> RetentionOffer:
        ...

    # Freeze history
    async def add_freeze_history(self, entry: FreezeHistory) -> FreezeHistory:
        ...

    async def list_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        ...

    # Exit surveys
    async def create_exit_survey(self, survey: ExitSurvey) -> ExitSurvey:
        ...

    async def get_exit_survey_for_subscription(self, subscription_id: str) -> Optional[ExitSurvey]:
        ...

    async def list_exit_surveys(self) -> List[ExitSurvey]:
        ...


# ====================
# Collaborator Protocols
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus"""

    async def publish_event(self, event: Any) -> bool:
        ...

    async def close(self) -> None:
        ...


class InvoiceClientProtocol(Protocol):
    """Protocol for the external invoicing system (fire-and-forget)"""

    async def request_charge(
        self, member_id: str, subscription_id: str, amount: Money, reason: str, reference_id: Optional[str] = None
    ) -> bool:
        ...

    async def request_credit(
        self, member_id: str, subscription_id: str, amount: Money, reason: str, reference_id: Optional[str] = None
    ) -> bool:
        ...

    async def close(self) -> None:
        ...


# ====================
# Custom Exceptions
# ====================


class MembershipServiceError(Exception):
    """Base exception for membership service"""
    pass


class NotFoundError(MembershipServiceError):
    """Unknown id"""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidStateTransitionError(MembershipServiceError):
    """Operation not legal from the current state"""

    def __init__(self, message: str, current_status: Optional[str] = None, target_status: Optional[str] = None):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


class ValidationError(MembershipServiceError):
    """Malformed input"""
    pass


class InsufficientBalanceError(MembershipServiceError):
    """Freeze days or usage counters exhausted"""

    def __init__(self, message: str, available: int = 0, requested: int = 0):
        self.available = available
        self.requested = requested
        super().__init__(message)


class ConcurrentModificationError(MembershipServiceError):
    """Optimistic lock conflict; safe to retry"""
    pass


class BusinessRuleViolationError(MembershipServiceError):
    """Request conflicts with a business invariant"""
    pass


__all__ = [
    "MembershipRepositoryProtocol",
    "EventBusProtocol",
    "InvoiceClientProtocol",
    "MembershipServiceError",
    "NotFoundError",
    "InvalidStateTransitionError",
    "ValidationError",
    "InsufficientBalanceError",
    "ConcurrentModificationError",
    "BusinessRuleViolationError",
]

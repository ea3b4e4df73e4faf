"""
Membership Service Business Logic

Facade over the lifecycle components: contracts, subscriptions, freezes,
plan changes, the cancellation & retention workflow and the daily sweeps.
HTTP handlers and event handlers talk to this class only.
"""

import logging
from datetime import date
from typing import List, Optional

from .cancellation_service import CancellationService
from .contract_service import ContractService
from .freeze_service import FreezeService
from .models import (
    CancelSubscriptionRequest,
    CancellationListResponse,
    CancellationPreview,
    CancellationReasonCategory,
    CancellationRequest,
    CancellationRequestStatus,
    CancellationResult,
    CancellationType,
    Contract,
    ContractEnrollmentResponse,
    CreateContractRequest,
    ExitSurvey,
    ExitSurveyAnalytics,
    ExitSurveyRequest,
    FreezeBalanceResponse,
    FreezeRequest,
    GrantFreezeDaysRequest,
    PlanChangeHistory,
    PlanChangePreview,
    PlanChangeRequest,
    PlanChangeResult,
    PlanChangeType,
    ProrationMode,
    RenewSubscriptionRequest,
    RetentionOffer,
    RetentionRateResponse,
    ScheduledPlanChange,
    Subscription,
    SweepResult,
    WaiveFeeRequest,
)
from .money import business_today
from .plan_change_service import PlanChangeService
from .policy import MembershipPolicy
from .protocols import (
    EventBusProtocol,
    InvoiceClientProtocol,
    MembershipRepositoryProtocol,
)
from .service_base import Clock
from .subscription_service import SubscriptionService
from .sweeps import MembershipSweeper

logger = logging.getLogger(__name__)

UPGRADE_TYPES = (PlanChangeType.UPGRADE, PlanChangeType.LATERAL)
DOWNGRADE_TYPES = (PlanChangeType.DOWNGRADE, PlanChangeType.LATERAL)


class MembershipService:
    """Membership lifecycle engine"""

    def __init__(
        self,
        repository: MembershipRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        invoice_client: Optional[InvoiceClientProtocol] = None,
        policy: Optional[MembershipPolicy] = None,
        clock: Optional[Clock] = None,
        business_timezone: str = "Asia/Riyadh",
    ):
        """
        Initialize membership service with injected dependencies

        Args:
            repository: Repository for data access
            event_bus: Optional event bus for publishing events
            invoice_client: Optional invoicing collaborator for charges and credits
            policy: Business policy (cooling-off, notice, offers); defaults apply when omitted
            clock: Callable returning "today"; defaults to the business-timezone date
        """
        self.repository = repository
        self.event_bus = event_bus
        self.invoice_client = invoice_client
        self.policy = policy or MembershipPolicy()
        self.clock = clock or (lambda: business_today(business_timezone))

        deps = dict(
            repository=repository,
            clock=self.clock,
            policy=self.policy,
            event_bus=event_bus,
            invoice_client=invoice_client,
        )
        self.contracts = ContractService(**deps)
        self.subscriptions = SubscriptionService(**deps)
        self.freeze = FreezeService(**deps)
        self.plan_changes = PlanChangeService(**deps)
        self.cancellations = CancellationService(freeze=self.freeze, plan_changes=self.plan_changes, **deps)
        self.sweeper = MembershipSweeper(
            subscriptions=self.subscriptions, freeze=self.freeze, cancellations=self.cancellations, **deps
        )

        logger.info("MembershipService initialized with dependency injection")

    async def initialize(self):
        """Initialize service (open the repository pool)"""
        await self.repository.initialize()
        logger.info("MembershipService initialized")

    async def close(self):
        await self.repository.close()
        if self.invoice_client:
            await self.invoice_client.close()

    # ====================
    # Contracts
    # ====================

    async def create_contract(self, request: CreateContractRequest) -> ContractEnrollmentResponse:
        return await self.contracts.create_contract(request)

    async def get_contract(self, contract_id: str) -> Contract:
        return await self.contracts.get_contract(contract_id)

    async def approve_contract(self, contract_id: str, staff_id: str) -> Contract:
        return await self.contracts.approve(contract_id, staff_id)

    async def sign_contract(self, contract_id: str, signature: str) -> Contract:
        return await self.contracts.sign(contract_id, signature)

    async def preview_contract_cancellation(self, contract_id: str) -> CancellationPreview:
        return await self.cancellations.preview_for_contract(contract_id)

    async def cancel_contract(
        self, contract_id: str, cancellation_type: CancellationType, reason: Optional[str] = None
    ) -> Contract:
        return await self.cancellations.request_for_contract(contract_id, cancellation_type, reason)

    async def cancel_contract_cooling_off(self, contract_id: str, reason: Optional[str] = None) -> Contract:
        return await self.cancellations.request_for_contract(
            contract_id, CancellationType.WITHIN_COOLING_OFF, reason
        )

    async def withdraw_contract_cancellation(self, contract_id: str) -> Contract:
        return await self.cancellations.withdraw_for_contract(contract_id)

    # ====================
    # Subscriptions
    # ====================

    async def get_subscription(self, subscription_id: str) -> Subscription:
        return await self.subscriptions.get_subscription(subscription_id)

    async def get_member_subscription(self, member_id: str) -> Subscription:
        return await self.subscriptions.get_member_subscription(member_id)

    async def renew_subscription(
        self, subscription_id: str, request: Optional[RenewSubscriptionRequest] = None
    ) -> Subscription:
        return await self.subscriptions.renew(subscription_id, request)

    async def use_class(self, member_id: str) -> Subscription:
        subscription = await self.subscriptions.get_member_subscription(member_id)
        return await self.subscriptions.use_class(subscription.subscription_id)

    async def use_guest_pass(self, member_id: str) -> Subscription:
        subscription = await self.subscriptions.get_member_subscription(member_id)
        return await self.subscriptions.use_guest_pass(subscription.subscription_id)

    # ====================
    # Freeze
    # ====================

    async def freeze_subscription(self, member_id: str, request: FreezeRequest) -> Subscription:
        subscription = await self.subscriptions.get_member_subscription(member_id)
        return await self.freeze.freeze(subscription.subscription_id, request)

    async def unfreeze_subscription(self, member_id: str) -> Subscription:
        subscription = await self.subscriptions.get_member_subscription(member_id)
        return await self.freeze.unfreeze(subscription.subscription_id, recorded_by=member_id)

    async def grant_freeze_days(self, subscription_id: str, request: GrantFreezeDaysRequest) -> Subscription:
        return await self.freeze.grant_freeze_days(subscription_id, request)

    async def get_freeze_balance(self, member_id: str) -> FreezeBalanceResponse:
        subscription = await self.subscriptions.get_member_subscription(member_id)
        return await self.freeze.get_freeze_balance(subscription.subscription_id)

    # ====================
    # Plan changes
    # ====================

    async def preview_plan_change(
        self, member_id: str, new_plan_id: str, proration_mode: Optional[ProrationMode] = None
    ) -> PlanChangePreview:
        return await self.plan_changes.preview_for_member(member_id, new_plan_id, proration_mode)

    async def upgrade(self, member_id: str, request: PlanChangeRequest) -> PlanChangeResult:
        await self.subscriptions.get_member_subscription(member_id)
        return await self.plan_changes.change_plan_for_member(member_id, request, UPGRADE_TYPES)

    async def downgrade(self, member_id: str, request: PlanChangeRequest) -> PlanChangeResult:
        await self.subscriptions.get_member_subscription(member_id)
        return await self.plan_changes.change_plan_for_member(member_id, request, DOWNGRADE_TYPES)

    async def cancel_scheduled_change(
        self, change_id: str, reason: Optional[str] = None, member_id: Optional[str] = None
    ) -> ScheduledPlanChange:
        return await self.plan_changes.cancel_scheduled_change(change_id, reason, member_id)

    async def get_plan_change_history(self, member_id: str) -> List[PlanChangeHistory]:
        subscription = await self.subscriptions.subscription_for_member(member_id)
        return await self.plan_changes.get_plan_change_history(subscription.subscription_id)

    # ====================
    # Cancellation & retention
    # ====================

    async def preview_cancellation(
        self, member_id: str, reason_category: CancellationReasonCategory = CancellationReasonCategory.OTHER
    ) -> CancellationPreview:
        return await self.cancellations.preview_for_member(member_id, reason_category)

    async def request_cancellation(self, member_id: str, request: CancelSubscriptionRequest) -> CancellationResult:
        return await self.cancellations.request_for_member(member_id, request)

    async def withdraw_cancellation(self, member_id: str) -> CancellationResult:
        return await self.cancellations.withdraw_for_member(member_id)

    async def accept_retention_offer(self, member_id: str, offer_id: str) -> CancellationResult:
        return await self.cancellations.accept_offer(offer_id, member_id)

    async def decline_retention_offer(self, member_id: str, offer_id: str) -> RetentionOffer:
        return await self.cancellations.decline_offer(offer_id, member_id)

    async def finalize_cancellation(self, request_id: str, force: bool = False) -> CancellationResult:
        return await self.cancellations.finalize(request_id, force)

    async def waive_termination_fee(self, request_id: str, request: WaiveFeeRequest) -> CancellationRequest:
        return await self.cancellations.waive_fee(request_id, request)

    async def list_cancellations(
        self, status: Optional[CancellationRequestStatus] = None, page: int = 1, page_size: int = 50
    ) -> CancellationListResponse:
        return await self.cancellations.list_cancellations(status, page, page_size)

    async def list_pending_cancellations(self, page: int = 1, page_size: int = 50) -> CancellationListResponse:
        return await self.cancellations.list_pending(page, page_size)

    async def get_retention_rate(self, start_date: date, end_date: date) -> RetentionRateResponse:
        return await self.cancellations.get_retention_rate(start_date, end_date)

    async def submit_exit_survey(self, member_id: str, request: ExitSurveyRequest) -> ExitSurvey:
        return await self.cancellations.submit_exit_survey(member_id, request)

    async def get_exit_survey_analytics(self) -> ExitSurveyAnalytics:
        return await self.cancellations.get_exit_survey_analytics()

    # ====================
    # Sweeps
    # ====================

    async def run_sweeps(self, today: Optional[date] = None) -> SweepResult:
        return await self.sweeper.run_all(today)

    async def health_check(self) -> bool:
        return await self.repository.health_check()


__all__ = ["MembershipService"]

"""
Membership Service Data Models

Pydantic models for membership plans, contracts, subscriptions, plan changes,
cancellation requests, retention offers, freeze history and exit surveys.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, computed_field, model_validator

from .money import Money


COOLING_OFF_HARD_CAP_DAYS = 14


# ====================
# Enum Types
# ====================

class BillingCycle(str, Enum):
    """Billing period length"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "semi_annual": 6, "annual": 12}[self.value]


class ContractType(str, Enum):
    MONTH_TO_MONTH = "month_to_month"
    FIXED_TERM = "fixed_term"


class ContractTerm(str, Enum):
    """Commitment length of a contract"""
    ONE_MONTH = "one_month"
    THREE_MONTHS = "three_months"
    SIX_MONTHS = "six_months"
    TWELVE_MONTHS = "twelve_months"
    TWENTY_FOUR_MONTHS = "twenty_four_months"

    @property
    def months(self) -> int:
        return {
            "one_month": 1,
            "three_months": 3,
            "six_months": 6,
            "twelve_months": 12,
            "twenty_four_months": 24,
        }[self.value]


class ContractStatus(str, Enum):
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    IN_NOTICE_PERIOD = "in_notice_period"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class EarlyTerminationFeeType(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    PERCENTAGE_OF_REMAINING = "percentage_of_remaining"


class CancellationType(str, Enum):
    WITHIN_COOLING_OFF = "within_cooling_off"
    STANDARD = "standard"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    FROZEN = "frozen"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


LIVE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)
TERMINAL_SUBSCRIPTION_STATUSES = (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED)


class PlanChangeType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    LATERAL = "lateral"


class ProrationMode(str, Enum):
    IMMEDIATE = "immediate"
    END_OF_PERIOD = "end_of_period"


class ScheduledChangeStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    CANCELLED = "cancelled"


class CancellationReasonCategory(str, Enum):
    FINANCIAL = "financial"
    RELOCATION = "relocation"
    HEALTH = "health"
    SCHEDULE = "schedule"
    DISSATISFACTION = "dissatisfaction"
    FOUND_ALTERNATIVE = "found_alternative"
    NOT_USING = "not_using"
    OTHER = "other"


class CancellationRequestStatus(str, Enum):
    IN_NOTICE = "in_notice"
    WITHDRAWN = "withdrawn"
    EFFECTIVE = "effective"
    OFFER_ACCEPTED = "offer_accepted"


class RetentionOfferType(str, Enum):
    DISCOUNT = "discount"
    FREE_MONTHS = "free_months"
    PLAN_SWITCH = "plan_switch"
    PAUSE = "pause"


class RetentionOfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class FreezeSource(str, Enum):
    MEMBER_SELF_SERVICE = "member_self_service"
    STAFF = "staff"
    SYSTEM = "system"


# ====================
# Plan
# ====================

class MembershipPlan(BaseModel):
    """Plan catalogue entry (owned by the plan catalogue, read here)"""
    plan_id: str
    name: Dict[str, str] = Field(default_factory=dict, description="Bilingual name {'en': ..., 'ar': ...}")
    price: Money
    join_fee: Optional[Money] = None
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    trial_days: int = Field(default=0, ge=0)
    classes_per_period: Optional[int] = Field(default=None, ge=0, description="None = unlimited")
    guest_passes_per_period: Optional[int] = Field(default=None, ge=0, description="None = unlimited")
    freeze_days_allowance: int = Field(default=0, ge=0)
    max_open_freeze_days: Optional[int] = Field(default=None, gt=0)

    # Contract defaults
    contract_type: ContractType = ContractType.MONTH_TO_MONTH
    contract_term: ContractTerm = ContractTerm.ONE_MONTH
    notice_period_days: Optional[int] = Field(default=None, ge=0)
    cooling_off_days: Optional[int] = Field(default=None, ge=0, le=COOLING_OFF_HARD_CAP_DAYS)
    early_termination_fee_type: EarlyTerminationFeeType = EarlyTerminationFeeType.NONE
    early_termination_fee_value: Decimal = Decimal("0")

    is_active: bool = True


# ====================
# Contract (state as tagged variants)
# ====================

class PendingSignatureState(BaseModel):
    status: Literal["pending_signature"] = "pending_signature"


class ActiveState(BaseModel):
    status: Literal["active"] = "active"
    activated_at: datetime


class InNoticePeriodState(BaseModel):
    status: Literal["in_notice_period"] = "in_notice_period"
    activated_at: datetime
    requested_at: datetime
    notice_period_end_date: date
    effective_date: date
    cancellation_type: CancellationType = CancellationType.STANDARD
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _effective_after_notice(self):
        if self.effective_date < self.notice_period_end_date:
            raise ValueError("effective_date must not precede notice_period_end_date")
        return self


class CancelledState(BaseModel):
    status: Literal["cancelled"] = "cancelled"
    cancelled_at: datetime
    effective_date: date
    cancellation_type: CancellationType
    reason: Optional[str] = None


class CompletedState(BaseModel):
    status: Literal["completed"] = "completed"
    completed_at: datetime


ContractState = Annotated[
    Union[PendingSignatureState, ActiveState, InNoticePeriodState, CancelledState, CompletedState],
    Field(discriminator="status"),
]


class Contract(BaseModel):
    """Legal agreement backing a subscription"""
    contract_id: str
    contract_number: str
    member_id: str
    plan_id: str
    contract_type: ContractType
    contract_term: ContractTerm
    start_date: date
    commitment_end_date: Optional[date] = None
    notice_period_days: int = Field(..., ge=0)
    early_termination_fee_type: EarlyTerminationFeeType = EarlyTerminationFeeType.NONE
    early_termination_fee_value: Decimal = Decimal("0")
    cooling_off_end_date: date
    subscription_id: Optional[str] = None

    state: ContractState = Field(default_factory=PendingSignatureState)

    signed_at: Optional[datetime] = None
    signature_ref: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def status(self) -> ContractStatus:
        return ContractStatus(self.state.status)

    @model_validator(mode="after")
    def _check_dates(self):
        if self.contract_type == ContractType.FIXED_TERM:
            if self.commitment_end_date is None:
                raise ValueError("fixed-term contract requires commitment_end_date")
            if self.commitment_end_date < self.start_date:
                raise ValueError("commitment_end_date must not precede start_date")
        elif self.commitment_end_date is not None:
            raise ValueError("month-to-month contract has no commitment_end_date")
        if self.cooling_off_end_date < self.start_date:
            raise ValueError("cooling_off_end_date must not precede start_date")
        if (self.cooling_off_end_date - self.start_date).days > COOLING_OFF_HARD_CAP_DAYS:
            raise ValueError(f"cooling-off window exceeds {COOLING_OFF_HARD_CAP_DAYS} days")
        return self


# ====================
# Subscription
# ====================

class ActiveFreeze(BaseModel):
    """Open freeze window of a FROZEN subscription"""
    start_date: date
    planned_end_date: Optional[date] = None
    source: FreezeSource = FreezeSource.MEMBER_SELF_SERVICE
    reason: Optional[str] = None


class ActiveDiscount(BaseModel):
    """Temporary price reduction from an accepted retention offer"""
    original_price: Money
    discount_percentage: Decimal
    ends_on: date


class Subscription(BaseModel):
    """Billable, operational record of membership"""
    subscription_id: str
    member_id: str
    plan_id: str
    contract_id: Optional[str] = None
    status: SubscriptionStatus
    start_date: date
    current_period_start: date
    current_period_end: date
    agreed_price: Money
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    auto_renew: bool = True

    freeze_days_remaining: int = Field(default=0, ge=0)
    total_freeze_days_used: int = Field(default=0, ge=0)
    active_freeze: Optional[ActiveFreeze] = None

    classes_remaining: Optional[int] = Field(default=None, ge=0)
    guest_passes_remaining: Optional[int] = Field(default=None, ge=0)

    active_discount: Optional[ActiveDiscount] = None

    cancelled_at: Optional[datetime] = None
    cancellation_effective_date: Optional[date] = None

    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.current_period_end <= self.current_period_start:
            raise ValueError("current_period_end must be after current_period_start")
        if self.status == SubscriptionStatus.FROZEN and self.active_freeze is None:
            raise ValueError("frozen subscription requires an open freeze window")
        if self.status != SubscriptionStatus.FROZEN and self.active_freeze is not None:
            raise ValueError("only a frozen subscription has an open freeze window")
        return self

    @property
    def period_length_days(self) -> int:
        return (self.current_period_end - self.current_period_start).days + 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUBSCRIPTION_STATUSES


# ====================
# Plan changes
# ====================

class ScheduledPlanChange(BaseModel):
    change_id: str
    subscription_id: str
    current_plan_id: str
    new_plan_id: str
    change_type: PlanChangeType
    scheduled_date: date
    status: ScheduledChangeStatus = ScheduledChangeStatus.PENDING
    initiated_by_member: bool = True
    reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class PlanChangeHistory(BaseModel):
    """Audit row for an applied plan change"""
    history_id: str
    subscription_id: str
    member_id: str
    old_plan_id: str
    new_plan_id: str
    change_type: PlanChangeType
    proration_mode: ProrationMode
    old_price: Money
    new_price: Money
    credit_amount: Money
    charge_amount: Money
    net_amount: Money
    days_remaining: int = 0
    period_length_days: int = 0
    effective_date: date
    scheduled_change_id: Optional[str] = None
    initiated_by_member: bool = True
    created_at: Optional[datetime] = None


# ====================
# Cancellation workflow
# ====================

class CancellationRequest(BaseModel):
    request_id: str
    member_id: str
    subscription_id: str
    contract_id: Optional[str] = None
    cancellation_type: CancellationType = CancellationType.STANDARD
    reason_category: CancellationReasonCategory = CancellationReasonCategory.OTHER
    reason_detail: Optional[str] = None
    status: CancellationRequestStatus = CancellationRequestStatus.IN_NOTICE
    requested_at: datetime
    notice_period_end_date: Optional[date] = None
    effective_date: date

    early_termination_fee: Optional[Money] = None
    fee_waived: bool = False
    fee_waived_by: Optional[str] = None
    fee_waived_reason: Optional[str] = None
    fee_waived_at: Optional[datetime] = None
    refund_amount: Optional[Money] = None

    accepted_offer_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    reactivation_eligible_until: Optional[date] = None

    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _effective_after_notice(self):
        if self.notice_period_end_date and self.effective_date < self.notice_period_end_date:
            raise ValueError("effective_date must not precede notice_period_end_date")
        return self

    @property
    def is_open(self) -> bool:
        return self.status == CancellationRequestStatus.IN_NOTICE


class RetentionOffer(BaseModel):
    offer_id: str
    cancellation_request_id: Optional[str] = None
    offer_type: RetentionOfferType
    title: Dict[str, str] = Field(default_factory=dict)
    description: Dict[str, str] = Field(default_factory=dict)
    value: Optional[Money] = None
    discount_percentage: Optional[Decimal] = None
    duration_days: Optional[int] = None
    duration_months: Optional[int] = None
    alternative_plan_id: Optional[str] = None
    status: RetentionOfferStatus = RetentionOfferStatus.PENDING
    expires_at: datetime
    priority: int = 0
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class FreezeHistory(BaseModel):
    """Append-only freeze ledger entry"""
    entry_id: str
    subscription_id: str
    start_date: date
    end_date: Optional[date] = None
    days_used: int = Field(default=0, ge=0)
    days_granted: int = Field(default=0, ge=0)
    source: FreezeSource
    reason: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: Optional[datetime] = None


class ExitSurvey(BaseModel):
    survey_id: str
    member_id: str
    subscription_id: str
    cancellation_request_id: Optional[str] = None
    reason_category: CancellationReasonCategory
    overall_satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    nps_score: Optional[int] = Field(default=None, ge=0, le=10)
    dissatisfaction_areas: List[str] = Field(default_factory=list)
    competitor_name: Optional[str] = None
    would_return: Optional[bool] = None
    what_would_bring_back: Optional[str] = None
    feedback: Optional[str] = None
    submitted_at: Optional[datetime] = None


# ====================
# Request Models
# ====================

class CreateContractRequest(BaseModel):
    member_id: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)
    start_date: Optional[date] = None
    contract_type: Optional[ContractType] = None
    contract_term: Optional[ContractTerm] = None
    auto_renew: bool = True
    auto_activate: bool = False
    notice_period_days: Optional[int] = Field(default=None, ge=0)
    cooling_off_days: Optional[int] = Field(default=None, ge=0, le=COOLING_OFF_HARD_CAP_DAYS)


class SignContractRequest(BaseModel):
    signature: str = Field(..., min_length=1, description="Signature blob (base64 or opaque reference)")


class ApproveContractRequest(BaseModel):
    staff_id: str = Field(..., min_length=1)


class PlanChangeRequest(BaseModel):
    new_plan_id: str = Field(..., min_length=1)
    proration_mode: Optional[ProrationMode] = None
    reason: Optional[str] = None


class FreezeRequest(BaseModel):
    end_date: Optional[date] = None
    reason: Optional[str] = None
    source: FreezeSource = FreezeSource.MEMBER_SELF_SERVICE


class GrantFreezeDaysRequest(BaseModel):
    days: int = Field(..., gt=0)
    reason: Optional[str] = None
    granted_by: Optional[str] = None


class RenewSubscriptionRequest(BaseModel):
    reason: Optional[str] = None
    requested_by: Optional[str] = None


class CancelSubscriptionRequest(BaseModel):
    reason_category: CancellationReasonCategory = CancellationReasonCategory.OTHER
    reason_detail: Optional[str] = None


class WaiveFeeRequest(BaseModel):
    waived_by: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class ExitSurveyRequest(BaseModel):
    reason_category: CancellationReasonCategory
    overall_satisfaction: Optional[int] = Field(default=None, ge=1, le=5)
    nps_score: Optional[int] = Field(default=None, ge=0, le=10)
    dissatisfaction_areas: List[str] = Field(default_factory=list)
    competitor_name: Optional[str] = None
    would_return: Optional[bool] = None
    what_would_bring_back: Optional[str] = None
    feedback: Optional[str] = None


# ====================
# Response Models
# ====================

class ContractEnrollmentResponse(BaseModel):
    contract: Contract
    subscription: Subscription


class CancellationPreview(BaseModel):
    contract_id: Optional[str] = None
    subscription_id: str
    is_within_cooling_off: bool
    cooling_off_days_remaining: int = 0
    is_within_commitment: bool
    commitment_months_remaining: int = 0
    notice_period_days: int
    notice_period_end_date: Optional[date] = None
    effective_date: date
    early_termination_fee: Money
    refund_amount: Optional[Money] = None
    retention_offers: List[RetentionOffer] = Field(default_factory=list)


class CancellationResult(BaseModel):
    request: CancellationRequest
    contract_status: Optional[ContractStatus] = None
    subscription_status: SubscriptionStatus
    retention_offers: List[RetentionOffer] = Field(default_factory=list)


class PlanChangePreview(BaseModel):
    subscription_id: str
    current_plan_id: str
    new_plan_id: str
    change_type: PlanChangeType
    proration_mode: ProrationMode
    effective_date: date
    period_length_days: int
    days_remaining: int
    credit_amount: Money
    charge_amount: Money
    net_amount: Money


class PlanChangeResult(BaseModel):
    change_type: PlanChangeType
    effective_date: date
    was_immediate: bool
    scheduled_change_id: Optional[str] = None
    net_amount: Optional[Decimal] = None
    currency: Optional[str] = None


class FreezeBalanceResponse(BaseModel):
    subscription_id: str
    freeze_days_remaining: int
    total_freeze_days_used: int
    is_frozen: bool = False
    frozen_since: Optional[date] = None
    history: List[FreezeHistory] = Field(default_factory=list)


class CancellationListResponse(BaseModel):
    items: List[CancellationRequest]
    total: int
    page: int
    page_size: int


class RetentionRateResponse(BaseModel):
    start_date: date
    end_date: date
    members_saved: int
    effective_cancellations: int
    retention_rate: Decimal


class ExitSurveyAnalytics(BaseModel):
    total_surveys: int
    by_reason: Dict[str, int] = Field(default_factory=dict)
    average_nps: Optional[Decimal] = None
    nps: Optional[Decimal] = None
    promoters: int = 0
    passives: int = 0
    detractors: int = 0
    average_satisfaction: Optional[Decimal] = None
    would_return_count: int = 0


class SweepResult(BaseModel):
    run_date: date
    cancellations_finalized: int = 0
    plan_changes_applied: int = 0
    freezes_ended: int = 0
    subscriptions_renewed: int = 0
    subscriptions_expired: int = 0
    contracts_completed: int = 0
    failures: List[Dict[str, Any]] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str] = Field(default_factory=dict)


class ServiceInfo(BaseModel):
    service: str
    version: str
    description: str
    capabilities: List[str]
    business_timezone: str
    default_currency: str

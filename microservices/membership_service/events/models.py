"""
Membership Service Event Models

Event types and stream configuration for membership_service.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class MembershipEventType(str, Enum):
    """
    Events published by membership_service.

    Streams: contract-stream, subscription-stream, plan_change-stream,
    cancellation-stream, retention_offer-stream, exit_survey-stream
    """
    CONTRACT_CREATED = "contract.created"
    CONTRACT_SIGNED = "contract.signed"
    CONTRACT_ACTIVATED = "contract.activated"
    CONTRACT_CANCELLATION_REQUESTED = "contract.cancellation_requested"
    CONTRACT_CANCELLATION_WITHDRAWN = "contract.cancellation_withdrawn"
    CONTRACT_CANCELLED = "contract.cancelled"
    CONTRACT_COMPLETED = "contract.completed"

    SUBSCRIPTION_FROZEN = "subscription.frozen"
    SUBSCRIPTION_UNFROZEN = "subscription.unfrozen"
    SUBSCRIPTION_RENEWED = "subscription.renewed"
    SUBSCRIPTION_EXPIRED = "subscription.expired"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_FREEZE_DAYS_GRANTED = "subscription.freeze_days_granted"

    PLAN_CHANGE_APPLIED = "plan_change.applied"
    PLAN_CHANGE_SCHEDULED = "plan_change.scheduled"
    PLAN_CHANGE_CANCELLED = "plan_change.cancelled"

    CANCELLATION_REQUESTED = "cancellation.requested"
    CANCELLATION_WITHDRAWN = "cancellation.withdrawn"
    CANCELLATION_EFFECTIVE = "cancellation.effective"
    CANCELLATION_FEE_WAIVED = "cancellation.fee_waived"

    RETENTION_OFFER_ACCEPTED = "retention_offer.accepted"
    EXIT_SURVEY_SUBMITTED = "exit_survey.submitted"


class MembershipSubscribedEventType(str, Enum):
    """Events that membership_service subscribes to from other services."""
    MEMBER_DELETED = "member.deleted"
    SCHEDULER_DAILY_SWEEP = "scheduler.daily_sweep"


class MembershipStreamConfig:
    """Stream configuration for membership_service"""
    SUBJECT_PREFIXES = ["contract", "subscription", "plan_change", "cancellation", "retention_offer", "exit_survey"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "membership"


# =============================================================================
# Event Data Models
# =============================================================================

class MembershipEventData(BaseModel):
    """Envelope payload for membership_service events."""
    event_type: MembershipEventType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "MembershipEventType",
    "MembershipSubscribedEventType",
    "MembershipStreamConfig",
    "MembershipEventData",
]

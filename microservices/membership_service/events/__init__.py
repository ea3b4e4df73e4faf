"""
Membership Service Events

Event handlers and publishers for contract, subscription and cancellation events.
"""

from .handlers import MembershipEventHandlers, get_event_handlers
from .models import MembershipEventType, MembershipSubscribedEventType
from .publishers import publish_membership_event

__all__ = [
    "MembershipEventHandlers",
    "get_event_handlers",
    "MembershipEventType",
    "MembershipSubscribedEventType",
    "publish_membership_event",
]

"""
Membership Service Event Publishers

Publish lifecycle events for contracts, subscriptions, plan changes and the
cancellation workflow. Publishing is fire-and-forget: failures are logged and
never propagate into the state transition that produced the event.
"""

import logging
from typing import Any, Dict

from core.nats_client import Event, ServiceSource

from .models import MembershipEventData, MembershipEventType

logger = logging.getLogger(__name__)


async def publish_membership_event(
    event_bus,
    event_type: MembershipEventType,
    data: Dict[str, Any],
) -> bool:
    """
    Publish one membership_service event

    Args:
        event_bus: NATS event bus instance (may be None)
        event_type: Event type; its value is the NATS subject
        data: Event payload (JSON-serializable after model_dump(mode="json"))

    Returns:
        True if the broker accepted the event, False otherwise
    """
    if event_bus is None:
        return False

    try:
        payload = MembershipEventData(event_type=event_type, data=data)
        event = Event(
            event_type=event_type,
            source=ServiceSource.MEMBERSHIP_SERVICE,
            data=payload.model_dump(mode="json"),
        )

        result = await event_bus.publish_event(event)

        if result is False:
            logger.warning(f"Event bus rejected {event_type.value}")
            return False

        logger.debug(f"Published {event_type.value}")
        return True

    except Exception as e:
        logger.warning(f"Failed to publish event {event_type.value}: {e}")
        return False


__all__ = ["publish_membership_event"]

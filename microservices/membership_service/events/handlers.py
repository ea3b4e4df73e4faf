"""
Membership Service Event Handlers

NATS event subscription handlers.
"""

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict

from core.nats_client import Event

from .models import MembershipSubscribedEventType

logger = logging.getLogger(__name__)


class MembershipEventHandlers:
    """Membership service event handlers"""

    def __init__(self, membership_service):
        self.service = membership_service

    def get_event_handler_map(self) -> Dict[str, Callable[[Event], Awaitable[None]]]:
        return {
            MembershipSubscribedEventType.MEMBER_DELETED.value: self.handle_member_deleted,
            MembershipSubscribedEventType.SCHEDULER_DAILY_SWEEP.value: self.handle_daily_sweep,
        }

    async def handle_member_deleted(self, event: Event) -> None:
        """
        Contracts and invoices-related history are retained for legal
        reasons, so a deleted member is only logged here.
        """
        member_id = (event.data or {}).get("member_id")
        if not member_id:
            logger.warning(f"member.deleted without member_id: {event.data}")
            return
        logger.info(f"Member {member_id} deleted upstream; membership records retained")

    async def handle_daily_sweep(self, event: Event) -> None:
        """Run the daily sweeps; an explicit run_date pins the business day"""
        data: Dict[str, Any] = event.data or {}
        run_date = data.get("run_date")
        try:
            today = date.fromisoformat(run_date) if run_date else None
        except ValueError:
            logger.error(f"scheduler.daily_sweep with malformed run_date: {run_date}")
            return

        result = await self.service.run_sweeps(today)
        if result.failures:
            logger.warning(f"Daily sweep {result.run_date} finished with {len(result.failures)} failures")


def get_event_handlers(membership_service) -> Dict[str, Callable[[Event], Awaitable[None]]]:
    """Get event handler map"""
    handlers = MembershipEventHandlers(membership_service)
    return handlers.get_event_handler_map()


__all__ = ["MembershipEventHandlers", "get_event_handlers"]

"""
NATS Event Bus Mock for Component Testing

Records membership events published through publish_membership_event and
replays subscribed events into the service's handlers.
"""
from typing import Any, Callable, Dict, List, Optional

from core.nats_client import Event


class MockEventBus:
    """Mock for the NATS event bus"""

    def __init__(self):
        self.published_events: List[Event] = []
        self.handlers: Dict[str, Callable] = {}
        self._should_raise: Optional[Exception] = None

    async def publish_event(self, event: Event) -> bool:
        if self._should_raise:
            raise self._should_raise
        self.published_events.append(event)
        return True

    async def subscribe_to_events(self, pattern: str, handler: Callable, **kwargs):
        self.handlers[pattern] = handler

    async def close(self):
        pass

    # Test helper methods

    def get_published(self, event_type: Optional[str] = None) -> List[Event]:
        if event_type:
            return [e for e in self.published_events if e.type == event_type]
        return list(self.published_events)

    def payloads(self, event_type: str) -> List[Dict[str, Any]]:
        """Inner payloads of the MembershipEventData envelopes"""
        return [e.data.get("data", {}) for e in self.get_published(event_type)]

    def published_types(self) -> List[str]:
        return [e.type for e in self.published_events]

    def set_error(self, error: Exception):
        self._should_raise = error

    def clear(self):
        self.published_events.clear()

    def assert_event_published(self, event_type: str, data_match: Optional[Dict] = None) -> Dict[str, Any]:
        payloads = self.payloads(event_type)
        assert payloads, f"No '{event_type}' event was published. Published: {self.published_types()}"

        if data_match:
            for payload in payloads:
                if all(payload.get(k) == v for k, v in data_match.items()):
                    return payload
            raise AssertionError(f"No '{event_type}' event matched {data_match}. Payloads: {payloads}")
        return payloads[0]

    def assert_no_events_published(self, event_type: Optional[str] = None):
        events = self.get_published(event_type)
        assert not events, f"Expected no events, got: {[e.type for e in events]}"

    async def simulate_event(self, subject: str, data: Dict[str, Any]):
        """Deliver an incoming event to the registered handler for its subject"""
        handler = self.handlers.get(subject)
        if handler is None:
            raise KeyError(f"No handler registered for {subject}")
        await handler(Event(event_type=subject, source="test", data=data))

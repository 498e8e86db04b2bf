# inkpost/services/event_bus.py
"""
In-process event bus carrying auth-state change notifications.
"""
import asyncio
import logging
from typing import Callable, Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Auth-state changes published by the auth subsystem."""
    SIGNED_IN = "auth.signed_in"
    SIGNED_OUT = "auth.signed_out"
    TOKEN_REFRESHED = "auth.token_refreshed"
    USER_UPDATED = "auth.user_updated"


class EventBus:
    """
    Event bus for publishing and subscribing to application events.

    Subscribers run in registration order on the publisher's task. A failing
    subscriber is logged and does not stop delivery to the others.
    """

    def __init__(self):
        self.subscribers: Dict[EventType, list] = {}

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        user_id: Optional[int] = None
    ):
        """
        Publish an event to all subscribers.

        Args:
            event_type: Type of event being published
            data: Event payload data
            user_id: Optional user ID associated with the event
        """
        event_payload = {
            "event_type": event_type.value,
            "data": data,
            "user_id": user_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        # Copy so subscribers may unsubscribe while being called
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event_payload)
                else:
                    callback(event_payload)
            except Exception as e:
                logger.error(f"Error in event subscriber for {event_type}: {e}")

    def subscribe(self, event_type: EventType, callback: Callable):
        """
        Subscribe to an event type with a callback function.

        Args:
            event_type: Event type to subscribe to
            callback: Function to call when event is published (sync or async)
        """
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)
        logger.debug(f"Subscribed to event {event_type.value}")

    def unsubscribe(self, event_type: EventType, callback: Callable):
        """
        Unsubscribe a callback from an event type.

        Args:
            event_type: Event type to unsubscribe from
            callback: Callback function to remove
        """
        if event_type in self.subscribers and callback in self.subscribers[event_type]:
            self.subscribers[event_type].remove(callback)
            logger.debug(f"Unsubscribed from event {event_type.value}")

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self.subscribers.get(event_type, []))

"""
Event Bus - Decoupled Module Communication
Engine modules emit events; listeners (dashboards, sockets, audit hooks)
subscribe without the engine importing them.
"""

from typing import Callable, Dict, List, Any
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus for decoupled module communication.
    Modules emit events, other modules register handlers to listen.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, handler: Callable):
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for
            handler: Callable that receives event_data dict
        """
        if event_name not in self._handlers:
            self._handlers[event_name] = []
        self._handlers[event_name].append(handler)
        logger.debug(f"Registered handler for event '{event_name}': {handler.__name__}")

    def emit(self, event_name: str, event_data: Dict[str, Any] = None):
        """
        Emit an event to all registered handlers.
        A failing handler is logged and never interrupts the emitter.
        """
        if event_data is None:
            event_data = {}

        logger.debug(f"Emitting event '{event_name}' with data: {event_data}")

        for handler in self._handlers.get(event_name, []):
            try:
                handler(event_data)
            except Exception as e:
                logger.error(f"Error in handler {handler.__name__} for event '{event_name}': {e}")

    def clear(self):
        """Clear all handlers (useful for testing)."""
        self._handlers.clear()


# Singleton instance
bus = EventBus()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Ingestion
EVENT_LEAD_INGESTED = 'lead_ingested'
EVENT_SESSION_OPENED = 'session_opened'
EVENT_DELIVERY_FAILED = 'delivery_failed'
EVENT_LEAD_UNREACHABLE = 'lead_unreachable'

# Reminders
EVENT_REMINDER_SENT = 'reminder_sent'
EVENT_DEAD_LEAD_MARKED = 'dead_lead_marked'

# Channel webhooks
EVENT_MESSAGE_RECEIVED = 'message_received'
EVENT_MESSAGE_STATUS_UPDATED = 'message_status_updated'

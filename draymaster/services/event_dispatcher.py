"""
Event dispatcher for automation events.

Every mutation handled by the automation engine produces events carrying
(entity_type, id, action, new_status). They are written to the outbox
inside the transaction and dispatched here only after commit, so
subscribers never observe state that was rolled back.

Usage:
    from draymaster.services.event_dispatcher import subscribe, EventType

    async def on_invoice(event):
        ...

    subscribe(EventType.INVOICE_GENERATED, on_invoice)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types emitted by the automation engine."""
    ORDER_STATUS_CHANGED = "order.status_changed"
    TRIP_STATUS_CHANGED = "trip.status_changed"
    CONTAINER_GATE_OUT = "container.gate_out"
    CONTAINER_GATE_IN = "container.gate_in"

    # Derived state
    CONTAINER_LIFECYCLE_CHANGED = "container.lifecycle_changed"
    SHIPMENT_STATUS_CHANGED = "shipment.status_changed"
    DEMURRAGE_STATUS_CHANGED = "container.demurrage_status_changed"

    # Billing artifacts
    CHARGES_DERIVED = "order.charges_derived"
    INVOICE_GENERATED = "invoice.generated"
    SETTLEMENT_UPDATED = "settlement.updated"
    CHASSIS_CHECKED_OUT = "chassis.checked_out"
    CHASSIS_RETURNED = "chassis.returned"


@dataclass
class Event:
    """Represents an event to be dispatched."""
    type: EventType
    entity_type: str
    entity_id: str
    action: str
    new_status: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def payload(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "id": self.entity_id,
            "action": self.action,
            "new_status": self.new_status,
            **self.data,
        }


EventHandler = Callable[[Event], Any]


class EventDispatcher:
    """
    Central event dispatcher.

    Implements a simple pub/sub pattern for decoupling the engine from
    whatever relays events out of process.
    """

    _instance: Optional["EventDispatcher"] = None
    _handlers: Dict[EventType, List[EventHandler]]
    _global_handlers: List[EventHandler]

    def __new__(cls) -> "EventDispatcher":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handlers = {}
            cls._instance._global_handlers = []
        return cls._instance

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to a specific event type."""
        if event_type not in self._handlers:
            self._handlers[event_type] = []
        self._handlers[event_type].append(handler)
        logger.debug(f"Handler subscribed to {event_type.value}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to all events."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h != handler
            ]

    def unsubscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers = [h for h in self._global_handlers if h != handler]

    async def emit(self, event: Event) -> None:
        """Emit an event to all subscribers. Handler failures are logged, not raised."""
        handlers = self._handlers.get(event.type, []) + self._global_handlers

        if not handlers:
            logger.debug(f"No handlers for event {event.type.value}")
            return

        tasks = []
        for handler in handlers:
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    tasks.append(result)
            except Exception as e:
                logger.error(f"Error in event handler for {event.type.value}: {e}")

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Error in event handler for {event.type.value}: {result}")

        logger.debug(f"Event {event.type.value} dispatched to {len(handlers)} handlers")


_dispatcher = EventDispatcher()


def get_dispatcher() -> EventDispatcher:
    """Get the global event dispatcher."""
    return _dispatcher


async def emit_events(events: List[Event]) -> None:
    for event in events:
        await _dispatcher.emit(event)


def subscribe(event_type: EventType, handler: EventHandler) -> None:
    _dispatcher.subscribe(event_type, handler)


def subscribe_all(handler: EventHandler) -> None:
    _dispatcher.subscribe_all(handler)

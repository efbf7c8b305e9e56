"""Domain events and the fire-and-forget dispatcher."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events emitted by the reservation core."""

    # Experience bookings
    BOOKING_CREATED = "booking.created"
    BOOKING_CONFIRMED = "booking.confirmed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_COMPLETED = "booking.completed"

    # Product orders
    ORDER_CREATED = "order.created"
    ORDER_PAID = "order.paid"
    ORDER_SHIPPED = "order.shipped"
    ORDER_CANCELLED = "order.cancelled"
    ORDER_DELIVERED = "order.delivered"
    ORDER_PAYMENT_FAILED = "order.payment_failed"
    ORDER_REFUNDED = "order.refunded"


class DomainEvent(BaseModel):
    """Envelope for an emitted event."""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    payload: Dict[str, Any] = Field(default_factory=dict)


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventDispatcher(ABC):
    """
    Notification collaborator.

    ``emit`` must return without waiting for delivery and must never raise
    into the caller; a committed transition is not undone because a
    subscriber failed.
    """

    @abstractmethod
    def emit(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        """Schedule delivery of an event."""


class InProcessEventBus(EventDispatcher):
    """Delivers events to in-process subscribers on background tasks."""

    def __init__(self):
        self._handlers: dict[EventType, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def emit(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        event = DomainEvent(event_type=event_type, payload=payload)
        logger.info(
            "Domain event emitted",
            extra={"event_type": event_type.value, "event_id": str(event.event_id)}
        )

        for handler in self._handlers.get(event_type, []):
            task = asyncio.create_task(self._deliver(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception as exc:
            logger.error(
                "Event handler failed",
                extra={
                    "event_type": event.event_type.value,
                    "event_id": str(event.event_id),
                    "error": str(exc),
                }
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries, used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Booking, BookingEvent
from app.services.booking_state import BookingEventType
from app.stores.event_bus import EventBus, event_bus

logger = logging.getLogger(__name__)


class NotificationService:
    """Records booking events in the outbox table and publishes them after commit.

    Message rendering and delivery belong to an external dispatcher; events
    only carry the data it needs.
    """

    def __init__(self, bus: EventBus | None = None) -> None:
        self.bus = bus or event_bus

    def record(
        self,
        session: AsyncSession,
        booking: Booking,
        event_type: BookingEventType,
        data: Optional[Dict[str, Any]] = None,
    ) -> BookingEvent:
        payload: Dict[str, Any] = {
            "reference_code": booking.reference_code,
            "recipient": {
                "name": booking.guest_name,
                "email": booking.guest_email,
                "phone": booking.guest_phone,
            },
            "locale": booking.locale,
        }
        payload.update(data or {})
        event = BookingEvent(booking_id=booking.id, event_type=event_type.value, payload=payload)
        session.add(event)
        return event

    async def dispatch(self, events: Iterable[BookingEvent]) -> None:
        for event in events:
            reference_code = (event.payload or {}).get("reference_code")
            if not reference_code:
                logger.warning("Dropping event without reference code", extra={"event_type": event.event_type})
                continue
            await self.bus.publish(reference_code, event.to_message())


def get_notification_service() -> NotificationService:
    return NotificationService()

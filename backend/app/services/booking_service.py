from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.models import AdditionalService, Booking, BookingStatus, CheckInInfo, RoomType
from app.services.booking_state import BookingEventType, transition
from app.services.lock_key_service import LockKeyService, RevocationReport
from app.services.notification_service import NotificationService
from app.services.reference_code_service import (
    ReferenceCodeCollision,
    ReferenceCodeService,
    normalize_reference_code,
)
from app.utils.config import get_settings
from app.utils.house_time import HouseClock
from app.utils.retry import retry_bounded

logger = logging.getLogger(__name__)


@dataclass
class GuestContact:
    name: str
    email: str
    phone: Optional[str] = None


@dataclass
class BookingRequest:
    room_type_id: str
    check_in_date: date
    check_out_date: date
    guest: GuestContact
    locale: Optional[str] = None


@dataclass
class CheckInDetails:
    legal_name: str
    document_number: str
    document_country: str
    services: List[str] = field(default_factory=list)
    estimated_arrival_time: Optional[str] = None
    special_requests: Optional[str] = None

    def extras(self, services: List[str]) -> Dict[str, Any]:
        return {
            "services": services,
            "estimated_arrival_time": self.estimated_arrival_time,
            "special_requests": self.special_requests or "",
        }


def price_stay(base_price: Decimal, check_in_date: date, check_out_date: date) -> tuple[int, Decimal]:
    """Nights and total for a stay; date-only values make the day difference exact."""
    nights = (check_out_date - check_in_date).days
    return nights, Decimal(base_price) * nights


class BookingService:
    """Owns booking creation, check-in submission and lifecycle transitions."""

    # Extra insert attempts if a concurrently created booking takes the same reference code.
    INSERT_ATTEMPTS = 3

    def __init__(
        self,
        reference_codes: ReferenceCodeService | None = None,
        notifications: NotificationService | None = None,
        house_clock: HouseClock | None = None,
    ) -> None:
        self.reference_codes = reference_codes or ReferenceCodeService()
        self.notifications = notifications or NotificationService()
        self.house_clock = house_clock or HouseClock()

    def _validate_dates(self, check_in_date: date, check_out_date: date) -> None:
        if check_out_date <= check_in_date:
            raise ValidationError(
                "Check-out date must be after check-in date",
                details={"check_in_date": check_in_date.isoformat(), "check_out_date": check_out_date.isoformat()},
            )
        today = self.house_clock.today()
        if check_in_date < today:
            raise ValidationError(
                "Check-in date cannot be in the past",
                details={"check_in_date": check_in_date.isoformat(), "today": today.isoformat()},
            )

    async def _load_room_type(self, session: AsyncSession, room_type_id: str) -> RoomType:
        room_type = await session.get(RoomType, room_type_id)
        if not room_type or not room_type.is_active:
            raise NotFoundError("Room type not found or not available", details={"room_type_id": room_type_id})
        return room_type

    async def create_booking(self, session: AsyncSession, request: BookingRequest) -> Booking:
        if not request.guest.name or not request.guest.email:
            raise ValidationError("Guest name and email are required")
        self._validate_dates(request.check_in_date, request.check_out_date)
        room_type = await self._load_room_type(session, request.room_type_id)
        # Plain values: a retried insert rolls back and expires loaded objects.
        room_type_id, room_type_name, base_price = room_type.id, room_type.name, room_type.base_price
        nights, total_price = price_stay(base_price, request.check_in_date, request.check_out_date)

        async def insert(_: int) -> Booking:
            reference_code = await self.reference_codes.generate(session)
            booking = Booking(
                reference_code=reference_code,
                room_type_id=room_type_id,
                status=BookingStatus.PENDING_CHECKIN,
                guest_name=request.guest.name,
                guest_email=request.guest.email,
                guest_phone=request.guest.phone or None,
                check_in_date=request.check_in_date,
                check_out_date=request.check_out_date,
                base_price=base_price,
                total_price=total_price,
                locale=request.locale or get_settings().default_locale,
            )
            session.add(booking)
            try:
                await session.flush()
            except IntegrityError as error:
                await session.rollback()
                raise ReferenceCodeCollision(reference_code) from error
            return booking

        booking = await retry_bounded(
            insert,
            max_attempts=self.INSERT_ATTEMPTS,
            retry_on=ReferenceCodeCollision,
            exhausted=lambda error: ConflictError("Could not allocate a unique booking reference"),
            label="booking_insert",
        )
        event = self.notifications.record(
            session,
            booking,
            BookingEventType.BOOKING_CREATED,
            {
                "room_type": room_type_name,
                "check_in_date": booking.check_in_date.isoformat(),
                "check_out_date": booking.check_out_date.isoformat(),
                "nights": nights,
                "total_price": str(booking.total_price),
            },
        )
        await session.commit()
        await self.notifications.dispatch([event])
        logger.info(
            "Booking created",
            extra={"booking_id": booking.id, "reference_code": booking.reference_code, "nights": nights},
        )
        # Reload so relationships are populated for the caller.
        return await self.lookup_booking(session, booking.reference_code)

    async def lookup_booking(self, session: AsyncSession, reference_code: str) -> Booking:
        stmt = (
            select(Booking)
            .where(Booking.reference_code == normalize_reference_code(reference_code))
            .execution_options(populate_existing=True)
        )
        booking = (await session.execute(stmt)).scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking not found", details={"reference_code": reference_code})
        return booking

    async def _resolve_services(self, session: AsyncSession, codes: List[str]) -> List[str]:
        """Normalize requested add-on codes; every one must be an active catalog entry."""
        requested = list(dict.fromkeys(code.strip().upper() for code in codes if code and code.strip()))
        if not requested:
            return []
        stmt = select(AdditionalService.code).where(
            AdditionalService.code.in_(requested),
            AdditionalService.is_active.is_(True),
        )
        offered = set((await session.execute(stmt)).scalars().all())
        unknown = [code for code in requested if code not in offered]
        if unknown:
            raise ValidationError("Unknown or unavailable additional services", details={"services": unknown})
        return requested

    async def submit_check_in(self, session: AsyncSession, reference_code: str, details: CheckInDetails) -> CheckInInfo:
        booking = await self.lookup_booking(session, reference_code)
        if booking.status != BookingStatus.PENDING_CHECKIN:
            raise InvalidStateError(
                "Booking is not eligible for check-in",
                details={"reference_code": booking.reference_code, "status": booking.status.value},
            )
        if booking.check_in_info is not None:
            raise ConflictError(
                "Check-in details were already submitted for this booking",
                details={"reference_code": booking.reference_code},
            )
        if not details.legal_name or not details.document_number or not details.document_country:
            raise ValidationError("Legal name and identity document are required")
        services = await self._resolve_services(session, details.services)

        info = CheckInInfo(
            booking=booking,
            legal_name=details.legal_name,
            document_number=details.document_number,
            document_country=details.document_country,
            extras=details.extras(services),
        )
        session.add(info)
        try:
            await session.flush()
        except IntegrityError as error:
            await session.rollback()
            raise ConflictError(
                "Check-in details were already submitted for this booking",
                details={"reference_code": reference_code},
            ) from error

        event = self.notifications.record(
            session,
            booking,
            BookingEventType.CHECKIN_SUBMITTED,
            {"services": info.extras.get("services", []), "estimated_arrival_time": details.estimated_arrival_time},
        )
        await session.commit()
        await self.notifications.dispatch([event])
        logger.info("Check-in submitted", extra={"booking_id": booking.id, "reference_code": booking.reference_code})
        return info

    async def _close_booking(
        self,
        session: AsyncSession,
        reference_code: str,
        target: BookingStatus,
        lock_keys: LockKeyService,
    ) -> tuple[Booking, RevocationReport]:
        booking = await self.lookup_booking(session, reference_code)
        step = transition(booking.status, target)
        booking.status = step.status
        events = [
            self.notifications.record(session, booking, event_type, {"previous_status": step.previous.value})
            for event_type in step.events
        ]
        await session.commit()
        await self.notifications.dispatch(events)
        logger.info(
            "Booking closed",
            extra={"booking_id": booking.id, "reference_code": booking.reference_code, "status": target.value},
        )
        report = await lock_keys.revoke_lock_keys(session, booking.id)
        return booking, report

    async def cancel_booking(
        self,
        session: AsyncSession,
        reference_code: str,
        lock_keys: LockKeyService,
    ) -> tuple[Booking, RevocationReport]:
        return await self._close_booking(session, reference_code, BookingStatus.CANCELLED, lock_keys)

    async def check_out(
        self,
        session: AsyncSession,
        reference_code: str,
        lock_keys: LockKeyService,
    ) -> tuple[Booking, RevocationReport]:
        return await self._close_booking(session, reference_code, BookingStatus.CHECKED_OUT, lock_keys)


def get_booking_service() -> BookingService:
    return BookingService()

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NoAvailabilityError, NotFoundError
from app.models import Booking, Room, RoomType
from app.services.booking_state import OCCUPYING_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stay:
    check_in: date
    check_out: date


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open [start, end) overlap: a checkout on day D frees the room for a check-in on D."""
    return a_start < b_end and b_start < a_end


def first_free_room(candidates: Sequence[Room], reservations: Dict[str, List[Stay]], stay: Stay) -> Optional[Room]:
    """First candidate (in the given order) whose reservations leave ``stay`` free."""
    for room in candidates:
        held = reservations.get(room.id, [])
        if not any(overlaps(stay.check_in, stay.check_out, other.check_in, other.check_out) for other in held):
            return room
    return None


class RoomAllocationService:
    """Picks a physical room for a booking without overlapping any occupying stay."""

    async def _candidate_rooms(self, session: AsyncSession, room_type_id: str, lock: bool) -> List[Room]:
        stmt = (
            select(Room)
            .where(
                Room.room_type_id == room_type_id,
                Room.is_active.is_(True),
                Room.lock_id.is_not(None),
            )
            .order_by(Room.room_number)
        )
        if lock:
            # Row locks in room-number order serialise concurrent check-and-assign
            # for the same room type without deadlocking.
            stmt = stmt.with_for_update()
        return list((await session.execute(stmt)).scalars().all())

    async def _reservations(
        self,
        session: AsyncSession,
        room_ids: Iterable[str],
        stay: Stay,
        exclude_booking_id: Optional[int] = None,
    ) -> Dict[str, List[Stay]]:
        room_ids = list(room_ids)
        if not room_ids:
            return {}
        stmt = select(Booking.room_id, Booking.check_in_date, Booking.check_out_date).where(
            Booking.room_id.in_(room_ids),
            Booking.status.in_(OCCUPYING_STATUSES),
            Booking.check_out_date > stay.check_in,
        )
        if exclude_booking_id is not None:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        reservations: Dict[str, List[Stay]] = {}
        for room_id, check_in, check_out in (await session.execute(stmt)).all():
            reservations.setdefault(room_id, []).append(Stay(check_in, check_out))
        return reservations

    async def allocate_room(self, session: AsyncSession, booking_id: int, room_type_id: str) -> Room:
        """Assign the first eligible room to the booking; the caller commits."""
        booking = await session.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})

        stay = Stay(booking.check_in_date, booking.check_out_date)
        candidates = await self._candidate_rooms(session, room_type_id, lock=True)
        reservations = await self._reservations(session, (room.id for room in candidates), stay, exclude_booking_id=booking.id)
        room = first_free_room(candidates, reservations, stay)
        if room is None:
            logger.info(
                "No room available",
                extra={"booking_id": booking_id, "room_type_id": room_type_id, "candidates": len(candidates)},
            )
            raise NoAvailabilityError(
                "No rooms available at this time. Please contact reception.",
                details={"room_type_id": room_type_id},
            )

        booking.room = room
        booking.room_id = room.id
        await session.flush()
        logger.info(
            "Room allocated",
            extra={"booking_id": booking_id, "room_id": room.id, "room_number": room.room_number},
        )
        return room

    async def count_free_rooms(self, session: AsyncSession, room_type_id: str, stay: Stay) -> int:
        """Free rooms of a type for a stay, net of overlapping bookings not yet given a room."""
        candidates = await self._candidate_rooms(session, room_type_id, lock=False)
        reservations = await self._reservations(session, (room.id for room in candidates), stay)
        unassigned_stmt = select(func.count(Booking.id)).where(
            Booking.room_type_id == room_type_id,
            Booking.room_id.is_(None),
            Booking.status.in_(OCCUPYING_STATUSES),
            Booking.check_in_date < stay.check_out,
            Booking.check_out_date > stay.check_in,
        )
        unassigned = (await session.execute(unassigned_stmt)).scalar_one()
        free = sum(
            1
            for room in candidates
            if not any(
                overlaps(stay.check_in, stay.check_out, other.check_in, other.check_out)
                for other in reservations.get(room.id, [])
            )
        )
        return max(free - unassigned, 0)

    async def availability(self, session: AsyncSession, stay: Stay, guests: int = 1) -> List[tuple[RoomType, int]]:
        stmt = (
            select(RoomType)
            .where(RoomType.is_active.is_(True), RoomType.max_occupancy >= guests)
            .order_by(RoomType.base_price)
        )
        room_types = (await session.execute(stmt)).scalars().all()
        return [(room_type, await self.count_free_rooms(session, room_type.id, stay)) for room_type in room_types]


def get_room_allocation_service() -> RoomAllocationService:
    return RoomAllocationService()

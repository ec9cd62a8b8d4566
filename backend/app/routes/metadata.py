from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ValidationError
from app.db.database import get_session
from app.models import RoomType
from app.schemas.booking import AvailabilityRequest, AvailabilityResponse, AvailabilityResponseRoomType
from app.services.booking_service import price_stay
from app.services.room_allocation_service import RoomAllocationService, Stay, get_room_allocation_service


router = APIRouter(prefix="/metadata", tags=["metadata"])


@router.get("/room-types")
async def list_room_types(session: AsyncSession = Depends(get_session)) -> list[dict]:
    result = await session.execute(
        select(RoomType).where(RoomType.is_active.is_(True)).order_by(RoomType.base_price)
    )
    room_types = result.scalars().unique().all()
    return [room_type.to_dict() for room_type in room_types]


@router.post("/availability", response_model=AvailabilityResponse)
async def room_availability(
    payload: AvailabilityRequest,
    session: AsyncSession = Depends(get_session),
    allocator: RoomAllocationService = Depends(get_room_allocation_service),
) -> AvailabilityResponse:
    if payload.check_out_date <= payload.check_in_date:
        raise ValidationError("Check-out date must be after check-in date")

    stay = Stay(payload.check_in_date, payload.check_out_date)
    rows = []
    for room_type, free_rooms in await allocator.availability(session, stay, payload.guests):
        nights, total = price_stay(room_type.base_price, stay.check_in, stay.check_out)
        rows.append(
            AvailabilityResponseRoomType(
                room_type_id=room_type.id,
                name=room_type.name,
                description=room_type.description,
                base_price=str(room_type.base_price),
                max_occupancy=room_type.max_occupancy,
                available_rooms=free_rooms,
                nights=nights,
                total_price=str(total),
            )
        )
    return AvailabilityResponse(
        check_in_date=payload.check_in_date,
        check_out_date=payload.check_out_date,
        guests=payload.guests,
        room_types=rows,
    )

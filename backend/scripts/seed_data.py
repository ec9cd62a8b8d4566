from __future__ import annotations

import asyncio
from decimal import Decimal

from app.db.database import async_session_factory
from app.models import AdditionalService, Room, RoomType

ROOM_TYPES = [
    {
        "id": "standard",
        "name": "Standard Room",
        "description": "Queen bed, garden view.",
        "base_price": Decimal("80.00"),
        "max_occupancy": 2,
        "rooms": ["101", "102", "103", "104", "105"],
    },
    {
        "id": "deluxe",
        "name": "Deluxe Room",
        "description": "King bed, balcony and sea view.",
        "base_price": Decimal("120.00"),
        "max_occupancy": 3,
        "rooms": ["201", "202", "203"],
    },
    {
        "id": "suite",
        "name": "Suite",
        "description": "Separate living area and kitchenette.",
        "base_price": Decimal("200.00"),
        "max_occupancy": 4,
        "rooms": ["301", "302"],
    },
]

ADDITIONAL_SERVICES = [
    {
        "code": "EARLY_CHECKIN",
        "name": "Early Check-in",
        "description": "Room ready from 10:00.",
        "unit": "booking",
        "price": Decimal("20.00"),
    },
    {
        "code": "LATE_CHECKOUT",
        "name": "Late Check-out",
        "description": "Keep the room until 18:00.",
        "unit": "booking",
        "price": Decimal("25.00"),
    },
    {
        "code": "AIRPORT_TRANSFER",
        "name": "Airport Transfer",
        "description": "Transfer from or to the airport.",
        "unit": "trip",
        "price": Decimal("50.00"),
    },
    {
        "code": "COWORKING_DAY_PASS",
        "name": "Coworking Day Pass",
        "description": "Desk and meeting-room access.",
        "unit": "day",
        "price": Decimal("15.00"),
    },
    {
        "code": "BREAKFAST",
        "name": "Daily Breakfast",
        "description": "Continental breakfast buffet.",
        "unit": "day",
        "price": Decimal("12.00"),
    },
]


async def seed() -> None:
    async with async_session_factory() as session:
        for payload in ROOM_TYPES:
            if await session.get(RoomType, payload["id"]):
                continue

            room_type = RoomType(
                id=payload["id"],
                name=payload["name"],
                description=payload["description"],
                base_price=payload["base_price"],
                max_occupancy=payload["max_occupancy"],
            )
            for room_number in payload["rooms"]:
                room_type.rooms.append(
                    Room(
                        id=f"room-{room_number}",
                        room_number=room_number,
                        # Replace with the lock ids registered on the smart-lock platform.
                        lock_id=f"LOCK_{room_number}",
                    )
                )
            session.add(room_type)

        for payload in ADDITIONAL_SERVICES:
            if await session.get(AdditionalService, payload["code"]):
                continue
            session.add(AdditionalService(**payload))

        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed())

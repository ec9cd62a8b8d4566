from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

if TYPE_CHECKING:  # pragma: no cover
    from .booking import Booking


class RoomType(Base):
    __tablename__ = "room_types"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_occupancy: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    rooms: Mapped[List["Room"]] = relationship(
        back_populates="room_type",
        order_by="Room.room_number",
        lazy="selectin",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "base_price": str(self.base_price),
            "max_occupancy": self.max_occupancy,
        }


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    room_number: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    room_type_id: Mapped[str] = mapped_column(ForeignKey("room_types.id", ondelete="RESTRICT"), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Absent when the room has no controllable smart lock.
    lock_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    room_type: Mapped[RoomType] = relationship(back_populates="rooms", lazy="selectin")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="room", lazy="noload")

    @property
    def is_allocatable(self) -> bool:
        return self.is_active and bool(self.lock_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "room_number": self.room_number,
            "room_type_id": self.room_type_id,
            "has_lock": bool(self.lock_id),
        }

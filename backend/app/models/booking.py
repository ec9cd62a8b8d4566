from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    Enum as PgEnum,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType

if TYPE_CHECKING:  # pragma: no cover
    from .lock_key import LockKey
    from .room import Room, RoomType


class BookingStatus(str, Enum):
    PENDING_CHECKIN = "PENDING_CHECKIN"
    CHECKIN_COMPLETED = "CHECKIN_COMPLETED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    reference_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    room_type_id: Mapped[str] = mapped_column(ForeignKey("room_types.id", ondelete="RESTRICT"), nullable=False)
    room_id: Mapped[str | None] = mapped_column(ForeignKey("rooms.id", ondelete="SET NULL"), index=True)
    status: Mapped[BookingStatus] = mapped_column(
        PgEnum(BookingStatus, name="booking_status"),
        default=BookingStatus.PENDING_CHECKIN,
        nullable=False,
    )
    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_email: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_phone: Mapped[str | None] = mapped_column(String(32))
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    locale: Mapped[str] = mapped_column(String(8), nullable=False, default="en")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    room_type: Mapped["RoomType"] = relationship(lazy="selectin")
    room: Mapped[Optional["Room"]] = relationship(back_populates="bookings", lazy="selectin")
    check_in_info: Mapped[Optional["CheckInInfo"]] = relationship(
        back_populates="booking",
        uselist=False,
        lazy="selectin",
    )
    lock_keys: Mapped[List["LockKey"]] = relationship(back_populates="booking", lazy="noload")
    events: Mapped[List["BookingEvent"]] = relationship(back_populates="booking", lazy="noload")

    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="ck_bookings_stay_dates"),
    )

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reference_code": self.reference_code,
            "status": self.status.value,
            "room_type": {
                "id": self.room_type.id,
                "name": self.room_type.name,
            } if self.room_type else None,
            "room": {
                "id": self.room.id,
                "room_number": self.room.room_number,
            } if self.room else None,
            "guest": {
                "name": self.guest_name,
                "email": self.guest_email,
                "phone": self.guest_phone,
            },
            "check_in_date": self.check_in_date.isoformat(),
            "check_out_date": self.check_out_date.isoformat(),
            "nights": self.nights,
            "base_price": str(self.base_price),
            "total_price": str(self.total_price),
            "locale": self.locale,
            "check_in_submitted": self.check_in_info is not None,
        }


class CheckInInfo(Base):
    __tablename__ = "check_in_infos"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=False)
    legal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_number: Mapped[str] = mapped_column(String(64), nullable=False)
    document_country: Mapped[str] = mapped_column(String(64), nullable=False)
    # selected add-on services, estimated arrival time, special requests
    extras: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="check_in_info")


class BookingEvent(Base):
    """Notification outbox row, written with the state change it describes."""

    __tablename__ = "booking_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="events")

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.event_type, **(self.payload or {})}

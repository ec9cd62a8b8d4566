from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import DateTime, Enum as PgEnum, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.house_time import as_utc

if TYPE_CHECKING:  # pragma: no cover
    from .booking import Booking
    from .room import Room


class LockKeyStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class LockKey(Base):
    __tablename__ = "lock_keys"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    room_id: Mapped[str] = mapped_column(ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    lock_id: Mapped[str] = mapped_column(String(64), nullable=False)
    passcode: Mapped[str] = mapped_column(String(32), nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[LockKeyStatus] = mapped_column(
        PgEnum(LockKeyStatus, name="lock_key_status"),
        default=LockKeyStatus.ACTIVE,
        nullable=False,
    )
    # Provider credential id; None when the provider side could not be confirmed.
    remote_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now(), nullable=False)

    booking: Mapped["Booking"] = relationship(back_populates="lock_keys")
    room: Mapped["Room"] = relationship(lazy="selectin")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "room_number": self.room.room_number if self.room else None,
            "passcode": self.passcode,
            "valid_from": as_utc(self.valid_from).isoformat(),
            "valid_to": as_utc(self.valid_to).isoformat(),
            "status": self.status.value,
        }

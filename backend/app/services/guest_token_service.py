"""
Guest access tokens ("magic links").

A token scopes a guest to exactly one checked-in booking and expires when the
check-out date begins in house time, while the room passcode stays valid until
check-out time that morning. Verification always re-reads the booking, so an
administrative change after issuance revokes portal access immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from urllib.parse import urlencode

from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidStateError, NotFoundError
from app.models import Booking, BookingStatus
from app.utils.config import Settings, get_settings
from app.utils.house_time import HouseClock

logger = logging.getLogger(__name__)


@dataclass
class GuestSession:
    booking_id: int
    reference_code: str
    guest_name: str
    guest_email: str
    room_number: str
    check_out_date: date
    expires_at: datetime


class GuestTokenService:
    def __init__(self, settings: Settings | None = None, house_clock: HouseClock | None = None) -> None:
        self.settings = settings or get_settings()
        self.house_clock = house_clock or HouseClock(self.settings)

    def access_deadline(self, check_out_date: date) -> datetime:
        return self.house_clock.start_of(check_out_date)

    async def _load(self, session: AsyncSession, booking_id: int) -> Optional[Booking]:
        booking = await session.get(Booking, booking_id, populate_existing=True)
        return booking

    async def issue_token(self, session: AsyncSession, booking_id: int) -> str:
        booking = await self._load(session, booking_id)
        if not booking:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        if booking.status != BookingStatus.CHECKED_IN or booking.room is None:
            raise InvalidStateError(
                "Booking not checked in",
                details={"booking_id": booking_id, "status": booking.status.value},
            )

        expires_at = self.access_deadline(booking.check_out_date)
        claims = {
            "sub": str(booking.id),
            "booking_id": booking.id,
            "guest_name": booking.guest_name,
            "guest_email": booking.guest_email,
            "room_number": booking.room.room_number,
            "iat": int(self.house_clock.now().timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(claims, self.settings.guest_token_secret, algorithm=self.settings.guest_token_algorithm)

    def magic_link(self, token: str) -> str:
        base_url = self.settings.public_base_url.rstrip("/")
        return f"{base_url}/guest-portal?{urlencode({'token': token})}"

    async def create_guest_link(self, session: AsyncSession, booking_id: int) -> str:
        return self.magic_link(await self.issue_token(session, booking_id))

    async def verify_token(self, session: AsyncSession, token: str) -> Optional[GuestSession]:
        """Return the live guest session, or None for any reason the token should not be honoured."""
        try:
            # jose checks "exp" against the wall clock; the house clock decides below.
            claims = jwt.decode(
                token,
                self.settings.guest_token_secret,
                algorithms=[self.settings.guest_token_algorithm],
                options={"verify_exp": False},
            )
            booking_id = int(claims["booking_id"])
            expires_claim = int(claims["exp"])
        except (JWTError, KeyError, TypeError, ValueError) as error:
            logger.info("Guest token rejected", extra={"error": str(error)})
            return None

        if self.house_clock.now().timestamp() >= expires_claim:
            logger.info("Guest token expired", extra={"booking_id": booking_id})
            return None

        booking = await self._load(session, booking_id)
        if not booking or booking.status != BookingStatus.CHECKED_IN or booking.room is None:
            logger.info("Guest token for inactive booking", extra={"booking_id": booking_id})
            return None

        expires_at = self.access_deadline(booking.check_out_date)
        if self.house_clock.now() >= expires_at:
            logger.info("Guest token past check-out", extra={"booking_id": booking_id})
            return None

        return GuestSession(
            booking_id=booking.id,
            reference_code=booking.reference_code,
            guest_name=booking.guest_name,
            guest_email=booking.guest_email,
            room_number=booking.room.room_number,
            check_out_date=booking.check_out_date,
            expires_at=expires_at,
        )


def get_guest_token_service() -> GuestTokenService:
    return GuestTokenService()

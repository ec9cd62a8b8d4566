from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import GuestAccessDenied, PreconditionError, ProviderError
from app.models import Booking, LockKey
from app.services.booking_state import BookingEventType
from app.services.guest_token_service import GuestSession, GuestTokenService
from app.services.lock_key_service import LockKeyService, load_booking
from app.services.notification_service import NotificationService
from app.services.smart_lock_service import SmartLockProvider
from app.utils.house_time import ValidityWindow, as_utc

logger = logging.getLogger(__name__)


class GuestPortalService:
    """Actions a guest can take with a magic-link token, delegated to the lock provider."""

    def __init__(
        self,
        provider: SmartLockProvider,
        tokens: GuestTokenService | None = None,
        lock_keys: LockKeyService | None = None,
        notifications: NotificationService | None = None,
    ) -> None:
        self.provider = provider
        self.tokens = tokens or GuestTokenService()
        self.lock_keys = lock_keys or LockKeyService(provider)
        self.notifications = notifications or NotificationService()

    async def authenticate(self, session: AsyncSession, token: str) -> GuestSession:
        guest = await self.tokens.verify_token(session, token)
        if guest is None:
            raise GuestAccessDenied("This link is invalid or has expired")
        return guest

    async def view(self, session: AsyncSession, token: str) -> Dict[str, Any]:
        guest = await self.authenticate(session, token)
        booking = await load_booking(session, guest.booking_id)
        lock_key = await self.lock_keys.get_active_lock_key(session, guest.booking_id)
        return {
            "reference_code": booking.reference_code,
            "guest_name": booking.guest_name,
            "room_number": guest.room_number,
            "room_type": booking.room_type.name,
            "check_in_date": booking.check_in_date.isoformat(),
            "check_out_date": booking.check_out_date.isoformat(),
            "status": booking.status.value,
            "access_expires_at": guest.expires_at.isoformat(),
            "lock_key": lock_key.to_dict() if lock_key else None,
        }

    async def _booking_lock(self, session: AsyncSession, guest: GuestSession) -> tuple[Booking, str]:
        booking = await load_booking(session, guest.booking_id)
        if booking.room is None or not booking.room.lock_id:
            raise PreconditionError("No smart lock is linked to this room", details={"booking_id": booking.id})
        return booking, booking.room.lock_id

    async def unlock(self, session: AsyncSession, token: str) -> None:
        guest = await self.authenticate(session, token)
        booking, lock_id = await self._booking_lock(session, guest)
        try:
            await self.provider.remote_unlock(lock_id)
        except ProviderError as error:
            logger.warning(
                "Remote unlock failed",
                extra={"booking_id": booking.id, "lock_id": lock_id, "kind": error.kind},
            )
            raise

        event = self.notifications.record(
            session,
            booking,
            BookingEventType.GUEST_REMOTE_UNLOCK,
            {"room_number": guest.room_number},
        )
        await session.commit()
        await self.notifications.dispatch([event])
        logger.info("Remote unlock", extra={"booking_id": booking.id, "lock_id": lock_id})

    def _credential_window(self, booking: Booking, lock_key: LockKey | None) -> ValidityWindow:
        if lock_key is not None:
            return ValidityWindow(as_utc(lock_key.valid_from), as_utc(lock_key.valid_to))
        return self.lock_keys.house_clock.validity_window(booking.check_in_date, booking.check_out_date)

    async def send_credential(self, session: AsyncSession, token: str) -> str:
        guest = await self.authenticate(session, token)
        booking, lock_id = await self._booking_lock(session, guest)
        lock_key = await self.lock_keys.get_active_lock_key(session, booking.id)
        window = self._credential_window(booking, lock_key)
        remarks = f"Room {guest.room_number} - {booking.guest_name}"
        try:
            remote_id = await self.provider.send_credential_to_guest_app(
                lock_id,
                booking.guest_email,
                window.start_ms,
                window.end_ms,
                remarks,
            )
        except ProviderError as error:
            logger.warning(
                "Sending eKey failed",
                extra={"booking_id": booking.id, "lock_id": lock_id, "kind": error.kind},
            )
            raise

        event = self.notifications.record(
            session,
            booking,
            BookingEventType.GUEST_CREDENTIAL_SENT,
            {
                "room_number": guest.room_number,
                "remote_id": remote_id,
                "valid_from": window.valid_from.isoformat(),
                "valid_to": window.valid_to.isoformat(),
            },
        )
        await session.commit()
        await self.notifications.dispatch([event])
        logger.info("eKey sent", extra={"booking_id": booking.id, "remote_id": remote_id})
        return remote_id

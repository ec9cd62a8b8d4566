from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ProviderError,
    ReservationError,
)
from app.models import Booking, BookingEvent, LockKey, LockKeyStatus, Room
from app.services.booking_state import ISSUABLE_STATUSES, BookingEventType, path_to_checked_in
from app.services.notification_service import NotificationService
from app.services.room_allocation_service import RoomAllocationService
from app.services.smart_lock_service import PasscodeGrant, SmartLockProvider
from app.utils.house_time import HouseClock, ValidityWindow

logger = logging.getLogger(__name__)


@dataclass
class IssuedLockKey:
    lock_key_id: int
    booking_id: int
    passcode: str
    room_number: str
    valid_from: datetime
    valid_to: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.lock_key_id,
            "booking_id": self.booking_id,
            "pin_code": self.passcode,
            "room_number": self.room_number,
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat(),
        }


@dataclass
class RevocationFailure:
    lock_key_id: int
    message: str


@dataclass
class RevocationReport:
    booking_id: int
    revoked: List[int] = field(default_factory=list)
    failures: List[RevocationFailure] = field(default_factory=list)

    @property
    def provider_in_sync(self) -> bool:
        return not self.failures


async def load_booking(session: AsyncSession, booking_id: int, lock: bool = False) -> Booking:
    stmt = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update(of=Booking)
    booking = (await session.execute(stmt)).scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found", details={"booking_id": booking_id})
    return booking


class LockKeyService:
    """Issues, revokes and expires time-windowed room passcodes for bookings.

    Stateless between calls: everything it knows is read from and written to
    the session it is handed. Provider calls are made with no transaction open
    so a slow lock platform never holds row locks.
    """

    def __init__(
        self,
        provider: SmartLockProvider,
        allocator: RoomAllocationService | None = None,
        notifications: NotificationService | None = None,
        house_clock: HouseClock | None = None,
    ) -> None:
        self.provider = provider
        self.allocator = allocator or RoomAllocationService()
        self.notifications = notifications or NotificationService()
        self.house_clock = house_clock or HouseClock()

    async def get_active_lock_key(self, session: AsyncSession, booking_id: int) -> Optional[LockKey]:
        stmt = (
            select(LockKey)
            .where(LockKey.booking_id == booking_id, LockKey.status == LockKeyStatus.ACTIVE)
            .order_by(LockKey.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _ensure_room(self, session: AsyncSession, booking: Booking) -> Room:
        room = booking.room
        if room is not None and room.is_allocatable:
            return room
        if room is not None:
            logger.warning(
                "Releasing unusable room assignment",
                extra={"booking_id": booking.id, "room_id": room.id, "is_active": room.is_active},
            )
            booking.room = None
            booking.room_id = None
            await session.flush()
        return await self.allocator.allocate_room(session, booking.id, booking.room_type_id)

    async def issue_lock_key(self, session: AsyncSession, booking_id: int) -> IssuedLockKey:
        try:
            booking = await load_booking(session, booking_id, lock=True)
            if booking.check_in_info is None:
                raise PreconditionError("Check-in not completed", details={"booking_id": booking_id})
            if booking.status not in ISSUABLE_STATUSES:
                raise InvalidStateError(
                    "Booking is not eligible for a lock key",
                    details={"booking_id": booking_id, "status": booking.status.value},
                )
            if await self.get_active_lock_key(session, booking.id):
                raise ConflictError(
                    "Active lock key already exists for this booking",
                    details={"booking_id": booking_id},
                )
            room = await self._ensure_room(session, booking)
        except ReservationError:
            await session.rollback()
            raise
        # The room assignment survives a provider failure so a retry skips re-allocation.
        await session.commit()

        window = self.house_clock.validity_window(booking.check_in_date, booking.check_out_date)
        label = booking.check_in_info.legal_name
        try:
            grant = await self.provider.create_passcode(room.lock_id, window.start_ms, window.end_ms, label)
        except ProviderError as error:
            await self._record_issuance_failure(session, booking, room, error)
            raise

        return await self._persist_issued(session, booking_id, room, grant, window)

    async def _record_issuance_failure(
        self,
        session: AsyncSession,
        booking: Booking,
        room: Room,
        error: ProviderError,
    ) -> None:
        logger.warning(
            "Lock key issuance failed",
            extra={
                "booking_id": booking.id,
                "room_id": room.id,
                "lock_id": room.lock_id,
                "kind": error.kind,
                "provider_message": error.provider_message,
            },
        )
        event = self.notifications.record(
            session,
            booking,
            BookingEventType.LOCK_KEY_ISSUANCE_FAILED,
            {"room_number": room.room_number, "error": error.message, "reason": error.kind},
        )
        await session.commit()
        await self.notifications.dispatch([event])

    async def _discard_grant(self, lock_id: str, grant: PasscodeGrant, reason: str) -> None:
        try:
            await self.provider.delete_passcode(lock_id, grant.remote_id)
        except ProviderError as error:
            logger.error(
                "Orphaned passcode left on lock",
                extra={
                    "lock_id": lock_id,
                    "remote_id": grant.remote_id,
                    "reason": reason,
                    "provider_message": error.provider_message,
                },
            )

    async def _persist_issued(
        self,
        session: AsyncSession,
        booking_id: int,
        room: Room,
        grant: PasscodeGrant,
        window: ValidityWindow,
    ) -> IssuedLockKey:
        # Read before any rollback expires the instance.
        lock_id, room_id, room_number = room.lock_id, room.id, room.room_number
        booking = await load_booking(session, booking_id, lock=True)
        try:
            if await self.get_active_lock_key(session, booking_id):
                raise ConflictError(
                    "Active lock key already exists for this booking",
                    details={"booking_id": booking_id},
                )
            steps = path_to_checked_in(booking.status)
        except ReservationError as error:
            await session.rollback()
            await self._discard_grant(lock_id, grant, reason=error.error_code)
            raise

        lock_key = LockKey(
            booking_id=booking_id,
            room_id=room_id,
            lock_id=lock_id,
            passcode=grant.passcode,
            valid_from=window.valid_from,
            valid_to=window.valid_to,
            status=LockKeyStatus.ACTIVE,
            remote_id=grant.remote_id,
        )
        session.add(lock_key)

        events: List[BookingEvent] = []
        for step in steps:
            booking.status = step.status
            for event_type in step.events:
                events.append(
                    self.notifications.record(session, booking, event_type, {"room_number": room_number})
                )
        await session.flush()
        events.append(
            self.notifications.record(
                session,
                booking,
                BookingEventType.LOCK_KEY_ISSUED,
                {
                    "lock_key_id": lock_key.id,
                    "room_number": room_number,
                    "pin_code": grant.passcode,
                    "valid_from": window.valid_from.isoformat(),
                    "valid_to": window.valid_to.isoformat(),
                },
            )
        )
        await session.commit()
        await self.notifications.dispatch(events)

        logger.info(
            "Lock key issued",
            extra={"booking_id": booking_id, "lock_key_id": lock_key.id, "room_number": room_number},
        )
        return IssuedLockKey(
            lock_key_id=lock_key.id,
            booking_id=booking_id,
            passcode=grant.passcode,
            room_number=room_number,
            valid_from=window.valid_from,
            valid_to=window.valid_to,
        )

    async def revoke_lock_keys(self, session: AsyncSession, booking_id: int) -> RevocationReport:
        """Revoke every ACTIVE key locally, deleting provider passcodes best-effort.

        Keys are read and the transaction closed before any provider call. Each
        key is then flipped with a conditional UPDATE, so a key that expired or
        was revoked concurrently is left alone.
        """
        booking = await load_booking(session, booking_id)
        stmt = (
            select(LockKey.id, LockKey.lock_id, LockKey.remote_id)
            .where(LockKey.booking_id == booking_id, LockKey.status == LockKeyStatus.ACTIVE)
            .order_by(LockKey.id)
        )
        keys = (await session.execute(stmt)).all()
        await session.commit()

        report = RevocationReport(booking_id=booking_id)
        failures: Dict[int, RevocationFailure] = {}
        for key_id, lock_id, remote_id in keys:
            failure: Optional[str] = None
            if remote_id:
                try:
                    await self.provider.delete_passcode(lock_id, remote_id)
                except ProviderError as error:
                    failure = error.message
                    logger.warning(
                        "Provider revocation failed; passcode may still open the lock",
                        extra={
                            "booking_id": booking_id,
                            "lock_key_id": key_id,
                            "lock_id": lock_id,
                            "kind": error.kind,
                            "provider_message": error.provider_message,
                        },
                    )
            else:
                failure = "No provider credential id recorded for this key"
                logger.warning(
                    "Lock key has no remote id; provider side not revoked",
                    extra={"booking_id": booking_id, "lock_key_id": key_id, "lock_id": lock_id},
                )
            if failure:
                failures[key_id] = RevocationFailure(lock_key_id=key_id, message=failure)

        events: List[BookingEvent] = []
        for key_id, lock_id, _ in keys:
            result = await session.execute(
                update(LockKey)
                .where(LockKey.id == key_id, LockKey.status == LockKeyStatus.ACTIVE)
                .values(status=LockKeyStatus.REVOKED)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                report.revoked.append(key_id)
            failed = failures.get(key_id)
            if failed:
                report.failures.append(failed)
                events.append(
                    self.notifications.record(
                        session,
                        booking,
                        BookingEventType.LOCK_KEY_REVOCATION_FAILED,
                        {"lock_key_id": key_id, "lock_id": lock_id, "error": failed.message},
                    )
                )

        if report.revoked:
            events.append(
                self.notifications.record(
                    session,
                    booking,
                    BookingEventType.LOCK_KEY_REVOKED,
                    {"lock_key_ids": report.revoked, "provider_failures": len(report.failures)},
                )
            )

        await session.commit()
        await self.notifications.dispatch(events)
        return report

    async def expire_old_lock_keys(self, session: AsyncSession) -> int:
        now = self.house_clock.now()
        stmt = (
            update(LockKey)
            .where(LockKey.status == LockKeyStatus.ACTIVE, LockKey.valid_to < now)
            .values(status=LockKeyStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()
        if result.rowcount:
            logger.info("Expired lock keys", extra={"count": result.rowcount})
        return result.rowcount


async def run_expiry_sweeper(
    service: LockKeyService,
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: float,
) -> None:
    while True:
        try:
            async with session_factory() as session:
                await service.expire_old_lock_keys(session)
        except SQLAlchemyError:
            logger.exception("Lock key expiry sweep failed")
        await asyncio.sleep(interval_seconds)

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from app.models import Booking, BookingEvent, BookingStatus
from app.services.booking_service import BookingService, price_stay
from app.services.reference_code_service import REFERENCE_ALPHABET, ReferenceCodeService

from conftest import TODAY, booking_request, check_in_details


def test_price_stay_multiplies_base_price_by_nights():
    nights, total = price_stay(Decimal("80.00"), date(2026, 6, 10), date(2026, 6, 13))
    assert nights == 3
    assert total == Decimal("240.00")


async def test_create_booking_for_one_night_starting_today(session, booking_service):
    booking = await booking_service.create_booking(
        session, booking_request(check_in=TODAY, check_out=TODAY + timedelta(days=1))
    )

    assert booking.status == BookingStatus.PENDING_CHECKIN
    assert booking.nights == 1
    assert booking.total_price == Decimal("80.00")
    assert booking.room_id is None
    assert len(booking.reference_code) == 6
    assert set(booking.reference_code) <= set(REFERENCE_ALPHABET)


async def test_create_booking_records_created_event(session, booking_service, event_bus):
    booking = await booking_service.create_booking(session, booking_request())

    events = (await session.execute(select(BookingEvent).where(BookingEvent.booking_id == booking.id))).scalars().all()
    assert [event.event_type for event in events] == ["booking.created"]
    payload = events[0].payload
    assert payload["reference_code"] == booking.reference_code
    assert payload["recipient"]["email"] == "ana@example.com"
    assert payload["nights"] == 3


async def test_create_booking_rejects_check_in_in_the_past(session, booking_service):
    with pytest.raises(ValidationError):
        await booking_service.create_booking(
            session, booking_request(check_in=TODAY - timedelta(days=1), check_out=TODAY + timedelta(days=1))
        )


@pytest.mark.parametrize("nights", [0, -2])
async def test_create_booking_rejects_non_positive_stays(session, booking_service, nights):
    check_in = TODAY + timedelta(days=5)
    with pytest.raises(ValidationError):
        await booking_service.create_booking(
            session, booking_request(check_in=check_in, check_out=check_in + timedelta(days=nights))
        )


async def test_create_booking_unknown_room_type(session, booking_service):
    with pytest.raises(NotFoundError):
        await booking_service.create_booking(session, booking_request(room_type_id="penthouse"))


async def test_reference_codes_are_unique(session, booking_service):
    codes = set()
    for offset in range(15):
        check_in = TODAY + timedelta(days=offset)
        booking = await booking_service.create_booking(
            session, booking_request(check_in=check_in, check_out=check_in + timedelta(days=1))
        )
        codes.add(booking.reference_code)
    assert len(codes) == 15


def _racing_codes(monkeypatch, codes: list[str]) -> ReferenceCodeService:
    # A concurrent insert took the code after the existence check passed.
    service = ReferenceCodeService(length=6, max_attempts=3)
    draws = iter(codes)
    monkeypatch.setattr(service, "draw", lambda: next(draws))

    async def never_seen(session, code: str) -> bool:
        return False

    monkeypatch.setattr(service, "exists", never_seen)
    return service


async def _booking_count(session) -> int:
    return (await session.execute(select(func.count(Booking.id)))).scalar_one()


async def test_insert_retries_when_reference_code_is_taken_concurrently(
    session, booking_service, notifications, house_clock, monkeypatch
):
    first = await booking_service.create_booking(session, booking_request())
    taken = first.reference_code
    racing = BookingService(
        reference_codes=_racing_codes(monkeypatch, [taken, "NEWCDE"]),
        notifications=notifications,
        house_clock=house_clock,
    )

    second = await racing.create_booking(session, booking_request(name="Rui Costa"))

    assert second.reference_code == "NEWCDE"
    assert second.guest_name == "Rui Costa"
    assert await _booking_count(session) == 2
    assert (await booking_service.lookup_booking(session, taken)).guest_name == "Ana Silva"


async def test_insert_gives_up_after_repeated_reference_collisions(
    session, booking_service, notifications, house_clock, monkeypatch
):
    first = await booking_service.create_booking(session, booking_request())
    taken = first.reference_code
    racing = BookingService(
        reference_codes=_racing_codes(monkeypatch, [taken] * BookingService.INSERT_ATTEMPTS),
        notifications=notifications,
        house_clock=house_clock,
    )

    with pytest.raises(ConflictError):
        await racing.create_booking(session, booking_request(name="Rui Costa"))
    assert await _booking_count(session) == 1


async def test_lookup_is_case_insensitive(session, booking_service):
    booking = await booking_service.create_booking(session, booking_request())

    found = await booking_service.lookup_booking(session, f"  {booking.reference_code.lower()} ")
    assert found.id == booking.id

    with pytest.raises(NotFoundError):
        await booking_service.lookup_booking(session, "ZZZZZZ")


async def test_submit_check_in_keeps_status(session, booking_service):
    booking = await booking_service.create_booking(session, booking_request())

    info = await booking_service.submit_check_in(session, booking.reference_code, check_in_details())

    assert info.booking_id == booking.id
    assert info.extras["services"] == ["BREAKFAST"]
    refreshed = await booking_service.lookup_booking(session, booking.reference_code)
    assert refreshed.status == BookingStatus.PENDING_CHECKIN
    assert refreshed.check_in_info is not None


async def test_submit_check_in_normalizes_service_codes(session, booking_service):
    booking = await booking_service.create_booking(session, booking_request())
    details = check_in_details()
    details.services = [" late_checkout", "BREAKFAST", "breakfast"]

    info = await booking_service.submit_check_in(session, booking.reference_code, details)

    assert info.extras["services"] == ["LATE_CHECKOUT", "BREAKFAST"]


@pytest.mark.parametrize("code", ["SPA_ACCESS", "PARKING"])
async def test_submit_check_in_rejects_unknown_or_inactive_services(session, booking_service, code):
    booking = await booking_service.create_booking(session, booking_request())
    details = check_in_details()
    details.services = ["BREAKFAST", code]

    with pytest.raises(ValidationError) as info:
        await booking_service.submit_check_in(session, booking.reference_code, details)

    assert info.value.details["services"] == [code]
    refreshed = await booking_service.lookup_booking(session, booking.reference_code)
    assert refreshed.check_in_info is None


async def test_submit_check_in_twice_conflicts(session, booking_service):
    booking = await booking_service.create_booking(session, booking_request())
    await booking_service.submit_check_in(session, booking.reference_code, check_in_details())

    with pytest.raises(ConflictError):
        await booking_service.submit_check_in(session, booking.reference_code, check_in_details())


async def test_submit_check_in_requires_identity(session, booking_service):
    booking = await booking_service.create_booking(session, booking_request())

    with pytest.raises(ValidationError):
        await booking_service.submit_check_in(session, booking.reference_code, check_in_details(legal_name=""))


async def test_submit_check_in_on_checked_in_booking_fails(session, booking_service, lock_key_service):
    booking = await booking_service.create_booking(session, booking_request())
    await booking_service.submit_check_in(session, booking.reference_code, check_in_details())
    await lock_key_service.issue_lock_key(session, booking.id)

    with pytest.raises(InvalidStateError):
        await booking_service.submit_check_in(session, booking.reference_code, check_in_details())


async def test_cancel_revokes_keys_and_is_terminal(session, booking_service, lock_key_service, smart_lock):
    booking = await booking_service.create_booking(session, booking_request())
    await booking_service.submit_check_in(session, booking.reference_code, check_in_details())
    issued = await lock_key_service.issue_lock_key(session, booking.id)

    cancelled, report = await booking_service.cancel_booking(session, booking.reference_code, lock_key_service)

    assert cancelled.status == BookingStatus.CANCELLED
    assert report.revoked == [issued.lock_key_id]
    assert report.provider_in_sync
    assert len(smart_lock.deleted) == 1
    assert await lock_key_service.get_active_lock_key(session, booking.id) is None

    with pytest.raises(InvalidStateError):
        await booking_service.check_out(session, booking.reference_code, lock_key_service)


async def test_check_out_requires_checked_in(session, booking_service, lock_key_service):
    booking = await booking_service.create_booking(session, booking_request())

    with pytest.raises(InvalidStateError):
        await booking_service.check_out(session, booking.reference_code, lock_key_service)


async def test_check_out_frees_room_for_new_stays(session, booking_service, lock_key_service):
    first = await booking_service.create_booking(session, booking_request())
    await booking_service.submit_check_in(session, first.reference_code, check_in_details())
    await lock_key_service.issue_lock_key(session, first.id)

    checked_out, _ = await booking_service.check_out(session, first.reference_code, lock_key_service)
    assert checked_out.status == BookingStatus.CHECKED_OUT

    events = (
        await session.execute(select(BookingEvent.event_type).where(BookingEvent.booking_id == first.id))
    ).scalars().all()
    assert "booking.checked_out" in events
    assert "lock_key.revoked" in events

from __future__ import annotations

from datetime import date, datetime, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from jose import jwt

from app.core.exceptions import InvalidStateError, NotFoundError
from app.models import Booking, BookingStatus
from app.services.guest_token_service import GuestTokenService
from app.utils.house_time import HouseClock

from conftest import FrozenClock, booking_request, check_in_details


async def _checked_in(session, booking_service, lock_key_service):
    booking = await booking_service.create_booking(session, booking_request())
    await booking_service.submit_check_in(session, booking.reference_code, check_in_details())
    await lock_key_service.issue_lock_key(session, booking.id)
    return booking.id, booking.reference_code


async def test_issue_token_claims(session, booking_service, lock_key_service, guest_tokens):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)

    token = await guest_tokens.issue_token(session, booking_id)

    claims = jwt.get_unverified_claims(token)
    assert claims["sub"] == str(booking_id)
    assert claims["booking_id"] == booking_id
    assert claims["room_number"] == "101"
    assert claims["guest_email"] == "ana@example.com"
    assert claims["exp"] == int(datetime(2026, 6, 13, 0, 0, tzinfo=timezone.utc).timestamp())


async def test_magic_link_carries_token(session, booking_service, lock_key_service, guest_tokens):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)

    link = await guest_tokens.create_guest_link(session, booking_id)

    parsed = urlparse(link)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://hotel.example.com/guest-portal"
    token = parse_qs(parsed.query)["token"][0]
    guest = await guest_tokens.verify_token(session, token)
    assert guest.booking_id == booking_id


async def test_issue_token_requires_checked_in(session, booking_service, guest_tokens):
    booking = await booking_service.create_booking(session, booking_request())

    with pytest.raises(InvalidStateError):
        await guest_tokens.issue_token(session, booking.id)
    with pytest.raises(NotFoundError):
        await guest_tokens.issue_token(session, 9999)


async def test_verify_returns_live_session(session, booking_service, lock_key_service, guest_tokens):
    booking_id, reference_code = await _checked_in(session, booking_service, lock_key_service)
    token = await guest_tokens.issue_token(session, booking_id)

    guest = await guest_tokens.verify_token(session, token)

    assert guest.reference_code == reference_code
    assert guest.room_number == "101"
    assert guest.check_out_date == date(2026, 6, 13)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
async def test_verify_rejects_malformed_tokens(session, guest_tokens, token):
    assert await guest_tokens.verify_token(session, token) is None


async def test_verify_rejects_foreign_signature(session, booking_service, lock_key_service, guest_tokens):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    forged = jwt.encode({"booking_id": booking_id, "exp": 4102444800}, "someone-else", algorithm="HS256")

    assert await guest_tokens.verify_token(session, forged) is None


async def test_verify_rejects_once_check_out_date_begins(session, booking_service, lock_key_service, guest_tokens, clock):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    token = await guest_tokens.issue_token(session, booking_id)

    clock.now = datetime(2026, 6, 12, 23, 59, tzinfo=timezone.utc)
    assert await guest_tokens.verify_token(session, token) is not None

    clock.now = datetime(2026, 6, 13, 0, 0, tzinfo=timezone.utc)
    assert await guest_tokens.verify_token(session, token) is None


async def test_verify_rejects_after_status_change(session, booking_service, lock_key_service, guest_tokens):
    booking_id, reference_code = await _checked_in(session, booking_service, lock_key_service)
    token = await guest_tokens.issue_token(session, booking_id)

    await booking_service.check_out(session, reference_code, lock_key_service)

    assert await guest_tokens.verify_token(session, token) is None


async def test_verify_uses_live_check_out_date(session, booking_service, lock_key_service, guest_tokens):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    token = await guest_tokens.issue_token(session, booking_id)

    # The stay is shortened after the link went out; the signed exp is still in the future.
    booking = await session.get(Booking, booking_id)
    booking.check_in_date = date(2026, 5, 30)
    booking.check_out_date = date(2026, 5, 31)
    await session.commit()

    assert await guest_tokens.verify_token(session, token) is None


async def test_verify_rejects_booking_without_room(session, booking_service, lock_key_service, guest_tokens):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    token = await guest_tokens.issue_token(session, booking_id)

    booking = await session.get(Booking, booking_id)
    booking.room = None
    await session.commit()

    assert booking.status == BookingStatus.CHECKED_IN
    assert await guest_tokens.verify_token(session, token) is None


async def test_verify_rejects_expired_claim(session, booking_service, lock_key_service, guest_tokens, settings, clock):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    stale = jwt.encode(
        {"booking_id": booking_id, "exp": int(clock.now.timestamp()) - 60},
        settings.guest_token_secret,
        algorithm="HS256",
    )

    assert await guest_tokens.verify_token(session, stale) is None


async def test_verify_requires_exp_claim(session, booking_service, lock_key_service, guest_tokens, settings):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    unbounded = jwt.encode({"booking_id": booking_id}, settings.guest_token_secret, algorithm="HS256")

    assert await guest_tokens.verify_token(session, unbounded) is None


async def test_verify_ignores_the_wall_clock(session, booking_service, lock_key_service, settings):
    booking_id, _ = await _checked_in(session, booking_service, lock_key_service)
    # Long past in real time, still ahead of this house clock.
    signed = jwt.encode(
        {"booking_id": booking_id, "exp": int(datetime(2001, 1, 1, tzinfo=timezone.utc).timestamp())},
        settings.guest_token_secret,
        algorithm="HS256",
    )
    early_clock = HouseClock(settings, clock=FrozenClock(datetime(2000, 6, 1, 9, 0, tzinfo=timezone.utc)))
    tokens = GuestTokenService(settings, early_clock)

    guest = await tokens.verify_token(session, signed)

    assert guest is not None
    assert guest.booking_id == booking_id

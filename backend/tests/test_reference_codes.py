from __future__ import annotations

import pytest

from app.core.exceptions import ConflictError
from app.services.reference_code_service import REFERENCE_ALPHABET, ReferenceCodeService, normalize_reference_code
from app.utils.retry import retry_bounded

from conftest import booking_request


def test_alphabet_excludes_ambiguous_characters():
    for character in "01OI":
        assert character not in REFERENCE_ALPHABET
    assert len(REFERENCE_ALPHABET) == 32


def test_draw_uses_configured_length():
    service = ReferenceCodeService(length=8, max_attempts=3)
    code = service.draw()
    assert len(code) == 8
    assert set(code) <= set(REFERENCE_ALPHABET)


def test_normalize_reference_code():
    assert normalize_reference_code(" abc234 ") == "ABC234"


async def test_generate_gives_up_after_max_attempts(session, booking_service, monkeypatch):
    booking = await booking_service.create_booking(session, booking_request())
    service = ReferenceCodeService(length=6, max_attempts=4)
    draws = []

    def always_taken() -> str:
        draws.append(booking.reference_code)
        return booking.reference_code

    monkeypatch.setattr(service, "draw", always_taken)

    with pytest.raises(ConflictError):
        await service.generate(session)
    assert len(draws) == 4


async def test_generate_retries_past_collisions(session, booking_service, monkeypatch):
    booking = await booking_service.create_booking(session, booking_request())
    service = ReferenceCodeService(length=6, max_attempts=5)
    candidates = iter([booking.reference_code, booking.reference_code, "NEWCDE"])
    monkeypatch.setattr(service, "draw", lambda: next(candidates))

    assert await service.generate(session) == "NEWCDE"


async def test_retry_bounded_propagates_other_errors():
    calls = []

    async def operation(attempt: int) -> None:
        calls.append(attempt)
        raise KeyError("boom")

    with pytest.raises(KeyError):
        await retry_bounded(
            operation,
            max_attempts=3,
            retry_on=ValueError,
            exhausted=lambda error: RuntimeError("exhausted"),
        )
    assert calls == [1]


async def test_retry_bounded_raises_exhausted_from_last_error():
    async def operation(attempt: int) -> None:
        raise ValueError(f"attempt {attempt}")

    with pytest.raises(RuntimeError) as info:
        await retry_bounded(
            operation,
            max_attempts=2,
            retry_on=ValueError,
            exhausted=lambda error: RuntimeError("exhausted"),
        )
    assert str(info.value.__cause__) == "attempt 2"

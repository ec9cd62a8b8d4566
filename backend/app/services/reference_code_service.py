from __future__ import annotations

import logging
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError
from app.models import Booking
from app.utils.config import get_settings
from app.utils.retry import retry_bounded

logger = logging.getLogger(__name__)

# No 0/O or 1/I: codes are read aloud and typed by guests.
REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class ReferenceCodeCollision(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(f"Reference code {code} already in use")
        self.code = code


class ReferenceCodeService:
    """Issues short, unguessable booking references unique across all bookings."""

    def __init__(self, length: int | None = None, max_attempts: int | None = None) -> None:
        settings = get_settings()
        self.length = length or settings.reference_code_length
        self.max_attempts = max_attempts or settings.reference_code_max_attempts

    def draw(self) -> str:
        return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(self.length))

    async def exists(self, session: AsyncSession, code: str) -> bool:
        stmt = select(Booking.id).where(Booking.reference_code == code)
        return (await session.execute(stmt)).first() is not None

    async def generate(self, session: AsyncSession) -> str:
        async def attempt(_: int) -> str:
            code = self.draw()
            if await self.exists(session, code):
                raise ReferenceCodeCollision(code)
            return code

        return await retry_bounded(
            attempt,
            max_attempts=self.max_attempts,
            retry_on=ReferenceCodeCollision,
            exhausted=lambda error: ConflictError(
                "Could not allocate a unique booking reference",
                details={"attempts": self.max_attempts},
            ),
            label="reference_code",
        )


def normalize_reference_code(code: str) -> str:
    return code.strip().upper()


def get_reference_code_service() -> ReferenceCodeService:
    return ReferenceCodeService()

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.exceptions import ProviderError
from app.db.base import Base
from app.db.database import build_engine, build_session_factory
from app.models import AdditionalService, Room, RoomType
from app.services.booking_service import BookingRequest, BookingService, CheckInDetails, GuestContact
from app.services.guest_token_service import GuestTokenService
from app.services.lock_key_service import LockKeyService
from app.services.notification_service import NotificationService
from app.services.reference_code_service import ReferenceCodeService
from app.services.smart_lock_service import PasscodeGrant
from app.stores.event_bus import EventBus
from app.utils.config import Settings
from app.utils.house_time import HouseClock

# House "today" for the frozen clock below.
TODAY = date(2026, 6, 1)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeSmartLock:
    """In-memory stand-in for the smart-lock platform."""

    def __init__(self) -> None:
        self.passcodes: Dict[str, Dict[str, Any]] = {}
        self.deleted: List[tuple[str, str]] = []
        self.unlocked: List[str] = []
        self.sent: List[Dict[str, Any]] = []
        self.create_error: Optional[ProviderError] = None
        self.delete_error: Optional[ProviderError] = None
        self.unlock_error: Optional[ProviderError] = None
        self.send_error: Optional[ProviderError] = None
        self.before_create_returns: Optional[Callable[[], Awaitable[None]]] = None
        self._next_id = 1000

    async def create_passcode(self, lock_id: str, start_ms: int, end_ms: int, label: str) -> PasscodeGrant:
        if self.create_error is not None:
            raise self.create_error
        self._next_id += 1
        remote_id = str(self._next_id)
        passcode = str(100000 + self._next_id)
        self.passcodes[remote_id] = {
            "lock_id": lock_id,
            "passcode": passcode,
            "start_ms": start_ms,
            "end_ms": end_ms,
            "label": label,
        }
        if self.before_create_returns is not None:
            await self.before_create_returns()
        return PasscodeGrant(passcode=passcode, remote_id=remote_id)

    async def delete_passcode(self, lock_id: str, remote_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append((lock_id, remote_id))
        self.passcodes.pop(remote_id, None)

    async def remote_unlock(self, lock_id: str) -> None:
        if self.unlock_error is not None:
            raise self.unlock_error
        self.unlocked.append(lock_id)

    async def send_credential_to_guest_app(
        self,
        lock_id: str,
        guest_identity: str,
        start_ms: int,
        end_ms: int,
        remarks: str,
    ) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(
            {"lock_id": lock_id, "guest_identity": guest_identity, "start_ms": start_ms, "end_ms": end_ms, "remarks": remarks}
        )
        return f"ekey-{len(self.sent)}"

    async def find_passcode(self, lock_id: str, passcode: str) -> Optional[PasscodeGrant]:
        for remote_id, entry in self.passcodes.items():
            if entry["lock_id"] == lock_id and entry["passcode"] == passcode:
                return PasscodeGrant(passcode=passcode, remote_id=remote_id)
        return None

    async def aclose(self) -> None:
        return None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        house_timezone="UTC",
        guest_token_secret="test-secret",
        public_base_url="https://hotel.example.com",
        reference_code_max_attempts=10,
        lock_key_sweep_interval_seconds=0,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def house_clock(settings: Settings, clock: FrozenClock) -> HouseClock:
    return HouseClock(settings, clock=clock)


@pytest.fixture
async def engine():
    # One shared in-memory connection so separate sessions see the same data.
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        await seed_inventory(session)
        yield session


async def seed_inventory(session: AsyncSession) -> None:
    standard = RoomType(id="standard", name="Standard Room", base_price=Decimal("80.00"), max_occupancy=2)
    deluxe = RoomType(id="deluxe", name="Deluxe Room", base_price=Decimal("120.00"), max_occupancy=3)
    session.add_all([standard, deluxe])
    session.add_all(
        [
            Room(id="room-101", room_number="101", room_type_id="standard", lock_id="LOCK_101"),
            Room(id="room-102", room_number="102", room_type_id="standard", lock_id="LOCK_102"),
            Room(id="room-201", room_number="201", room_type_id="deluxe", lock_id="LOCK_201"),
        ]
    )
    session.add_all(
        [
            AdditionalService(code="BREAKFAST", name="Daily Breakfast", unit="day", price=Decimal("12.00")),
            AdditionalService(code="LATE_CHECKOUT", name="Late Check-out", unit="booking", price=Decimal("25.00")),
            AdditionalService(code="PARKING", name="Parking Space", unit="day", price=Decimal("10.00"), is_active=False),
        ]
    )
    await session.commit()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def notifications(event_bus: EventBus) -> NotificationService:
    return NotificationService(bus=event_bus)


@pytest.fixture
def smart_lock() -> FakeSmartLock:
    return FakeSmartLock()


@pytest.fixture
def booking_service(settings: Settings, notifications: NotificationService, house_clock: HouseClock) -> BookingService:
    return BookingService(
        reference_codes=ReferenceCodeService(length=settings.reference_code_length, max_attempts=10),
        notifications=notifications,
        house_clock=house_clock,
    )


@pytest.fixture
def lock_key_service(smart_lock: FakeSmartLock, notifications: NotificationService, house_clock: HouseClock) -> LockKeyService:
    return LockKeyService(smart_lock, notifications=notifications, house_clock=house_clock)


@pytest.fixture
def guest_tokens(settings: Settings, house_clock: HouseClock) -> GuestTokenService:
    return GuestTokenService(settings, house_clock)


def booking_request(
    room_type_id: str = "standard",
    check_in: date = date(2026, 6, 10),
    check_out: date = date(2026, 6, 13),
    name: str = "Ana Silva",
) -> BookingRequest:
    return BookingRequest(
        room_type_id=room_type_id,
        check_in_date=check_in,
        check_out_date=check_out,
        guest=GuestContact(name=name, email="ana@example.com", phone="+351900000000"),
    )


def check_in_details(legal_name: str = "Ana Maria Silva") -> CheckInDetails:
    return CheckInDetails(
        legal_name=legal_name,
        document_number="P1234567",
        document_country="PT",
        services=["breakfast"],
        estimated_arrival_time="15:30",
    )

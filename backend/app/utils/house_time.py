from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from app.utils.config import Settings, get_settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(as_utc(value).timestamp() * 1000)


@dataclass(frozen=True)
class ValidityWindow:
    valid_from: datetime
    valid_to: datetime

    @property
    def start_ms(self) -> int:
        return to_epoch_ms(self.valid_from)

    @property
    def end_ms(self) -> int:
        return to_epoch_ms(self.valid_to)


class HouseClock:
    """House-local calendar rules: today's date and check-in/out boundaries."""

    def __init__(self, settings: Settings | None = None, clock: Clock = utc_now) -> None:
        settings = settings or get_settings()
        self.tz = ZoneInfo(settings.house_timezone)
        self.check_in_time: time = settings.house_check_in_time
        self.check_out_time: time = settings.house_check_out_time
        self._clock = clock

    def now(self) -> datetime:
        return as_utc(self._clock())

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()

    def at(self, day: date, clock_time: time) -> datetime:
        local = datetime.combine(day, clock_time, tzinfo=self.tz)
        return local.astimezone(timezone.utc)

    def start_of(self, day: date) -> datetime:
        return self.at(day, time.min)

    def check_out_boundary(self, check_out_date: date) -> datetime:
        return self.at(check_out_date, self.check_out_time)

    def validity_window(self, check_in_date: date, check_out_date: date) -> ValidityWindow:
        return ValidityWindow(
            valid_from=self.at(check_in_date, self.check_in_time),
            valid_to=self.check_out_boundary(check_out_date),
        )

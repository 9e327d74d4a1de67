"""Calendar-day helpers shared by availability, promotion and ledger code.

Every date that takes part in a comparison goes through ``normalize_day``.
The zone used to turn instants into days is ``settings.booking_timezone``:
aware datetimes are converted into it, naive ones are taken as already
being in it.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from venue_booking.config import settings


@lru_cache(maxsize=8)
def _load_zone(zone_name: str) -> tzinfo:
    try:
        return ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f'Unknown booking timezone: {zone_name}') from exc


def booking_zone(name: str | None = None) -> tzinfo:
    return _load_zone((name or settings.booking_timezone).strip())


def normalize_day(value: date | datetime | str, *, zone: tzinfo | None = None) -> date:
    zone = zone or booking_zone()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(zone)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValueError('Date is required')
        if len(raw) == 10:
            try:
                return date.fromisoformat(raw)
            except ValueError as exc:
                raise ValueError(f'Invalid date: {value}') from exc
        try:
            parsed = datetime.fromisoformat(raw.replace('Z', '+00:00'))
        except ValueError as exc:
            raise ValueError(f'Invalid date: {value}') from exc
        return normalize_day(parsed, zone=zone)
    raise ValueError(f'Unsupported date value: {value!r}')


def today(*, now: datetime | None = None, zone: tzinfo | None = None) -> date:
    zone = zone or booking_zone()
    current = now or datetime.now(tz=zone)
    return normalize_day(current, zone=zone)


def iter_days(start: date, end: date) -> Iterator[date]:
    if start > end:
        return
    current = start
    while True:
        yield current
        # date.max has no successor.
        if current >= end:
            return
        current += timedelta(days=1)


@dataclass(frozen=True)
class DayInterval:
    """Closed interval of calendar days."""

    start: date
    end: date

    @classmethod
    def single(cls, day: date) -> DayInterval:
        return cls(start=day, end=day)

    @classmethod
    def from_fields(
        cls,
        *,
        day: date | None,
        date_from: date | None,
        date_to: date | None,
    ) -> DayInterval:
        if date_from is not None and date_to is not None:
            return cls(start=date_from, end=date_to)
        if day is not None:
            return cls.single(day)
        if date_from is not None:
            return cls.single(date_from)
        raise ValueError('A date or a dateFrom/dateTo range is required')

    @property
    def is_valid(self) -> bool:
        return self.start <= self.end

    @property
    def span_days(self) -> int:
        return (self.end - self.start).days + 1

    def overlaps(self, other: DayInterval) -> bool:
        return self.start <= other.end and other.start <= self.end

    def intersection(self, other: DayInterval) -> list[date]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        return list(iter_days(start, end))

    def days(self) -> list[date]:
        return list(iter_days(self.start, self.end))

    def __str__(self) -> str:
        if self.start == self.end:
            return self.start.isoformat()
        return f'{self.start.isoformat()}..{self.end.isoformat()}'

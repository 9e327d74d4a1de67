"""Venue availability decisions.

``check_availability`` is pure: it sees a venue snapshot, the requested
interval and the bookings that currently hold days at the venue, and
returns a decision. The database-facing helpers below load those inputs
and turn a rejection into the matching ``BookingError``.

The decision only reads. Two concurrent requests can both be accepted
here; the ``booking_days`` unique constraint settles the race when the
second one writes (see ``booking_service.reserve_days``).
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from venue_booking.config import settings
from venue_booking.models import OCCUPYING_STATUSES, Booking, BookingDay
from venue_booking.services import dates as day_utils
from venue_booking.services.dates import DayInterval
from venue_booking.services.errors import (
    ERROR_CLASSES,
    BookingError,
    ErrorKind,
    StorageUnavailableError,
    ValidationError,
)
from venue_booking.services.venue_service import VenueSnapshot, get_venue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OccupyingBooking:
    booking_id: int
    interval: DayInterval


@dataclass(frozen=True)
class Rejection:
    kind: ErrorKind
    reason: str
    dates: tuple[date, ...] = ()
    booking_id: int | None = None

    def to_error(self) -> BookingError:
        return ERROR_CLASSES[self.kind](self.reason, dates=list(self.dates), booking_id=self.booking_id)


@dataclass(frozen=True)
class AvailabilityDecision:
    rejection: Rejection | None = None

    @property
    def accepted(self) -> bool:
        return self.rejection is None

    def raise_for_rejection(self) -> None:
        if self.rejection is not None:
            raise self.rejection.to_error()


ACCEPT = AvailabilityDecision()


def _reject(kind: ErrorKind, reason: str, *, dates: Iterable[date] = (), booking_id: int | None = None):
    return AvailabilityDecision(
        rejection=Rejection(kind=kind, reason=reason, dates=tuple(sorted(dates)), booking_id=booking_id)
    )


def check_availability(
    venue: VenueSnapshot,
    interval: DayInterval,
    occupying: Iterable[OccupyingBooking],
    *,
    today: date,
    guests: int | None = None,
    enforce_capacity: bool = False,
) -> AvailabilityDecision:
    if not venue.is_bookable:
        return _reject(ErrorKind.VENUE_NOT_AVAILABLE, 'Venue is not available for booking')

    if not interval.is_valid:
        return _reject(ErrorKind.VALIDATION_ERROR, 'dateFrom cannot be after dateTo')

    if interval.start < today:
        return _reject(
            ErrorKind.DATE_IN_PAST,
            'Booking date cannot be in the past',
            dates=[d for d in day_utils.iter_days(interval.start, min(interval.end, today)) if d < today],
        )

    if enforce_capacity and guests is not None and not venue.capacity.admits(guests):
        return _reject(
            ErrorKind.VALIDATION_ERROR,
            f'Guest count {guests} is outside the venue capacity '
            f'({venue.capacity.min_guests or 1}-{venue.capacity.max_guests or "unlimited"})',
        )

    blocked = [d for d in interval.days() if d in venue.blocked_dates]
    if blocked:
        if interval.start == interval.end:
            reason = 'This date is blocked and not available for booking'
        else:
            reason = 'Some dates in the selected range are blocked and not available for booking'
        return _reject(ErrorKind.DATE_BLOCKED, reason, dates=blocked)

    for existing in sorted(occupying, key=lambda item: (item.interval.start, item.booking_id)):
        if existing.interval.overlaps(interval):
            return _reject(
                ErrorKind.DATE_CONFLICT,
                'Venue is already booked for this date. Please select a different date.',
                dates=existing.interval.intersection(interval),
                booking_id=existing.booking_id,
            )

    return ACCEPT


def booking_interval(booking: Booking) -> DayInterval:
    return DayInterval.from_fields(day=booking.date, date_from=booking.date_from, date_to=booking.date_to)


def date_overlap_clause(model, *, start: date | None, end: date | None):
    """Rows whose day, or dateFrom..dateTo range when both are set, touch ``start..end``.

    Either bound may be ``None`` for an open end. Works for any model with
    ``date``, ``date_from`` and ``date_to`` columns.
    """
    has_range = and_(model.date_from.is_not(None), model.date_to.is_not(None))
    range_terms = [has_range]
    day_terms = [~has_range]
    if end is not None:
        range_terms.append(model.date_from <= end)
        day_terms.append(model.date <= end)
    if start is not None:
        range_terms.append(model.date_to >= start)
        day_terms.append(model.date >= start)
    return or_(and_(*range_terms), and_(*day_terms))


def occupying_bookings(
    db: Session,
    *,
    venue_id: int,
    interval: DayInterval,
    exclude_booking_id: int | None = None,
) -> list[OccupyingBooking]:
    query = select(Booking).where(
        Booking.venue_id == venue_id,
        Booking.status.in_(OCCUPYING_STATUSES),
        date_overlap_clause(Booking, start=interval.start, end=interval.end),
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    rows = db.execute(query).scalars().all()
    return [OccupyingBooking(booking_id=row.id, interval=booking_interval(row)) for row in rows]


def ensure_available(
    db: Session,
    *,
    venue_id: int,
    interval: DayInterval,
    guests: int | None = None,
    exclude_booking_id: int | None = None,
    lock_venue: bool = True,
) -> VenueSnapshot:
    """Raise the matching ``BookingError`` unless the venue can take ``interval``.

    Storage failures while reading fail closed with ``STORAGE_UNAVAILABLE``.
    Returns the venue snapshot the decision was made against.
    """
    try:
        venue = get_venue(db, venue_id, lock=lock_venue)
        occupying = occupying_bookings(
            db,
            venue_id=venue_id,
            interval=interval,
            exclude_booking_id=exclude_booking_id,
        )
    except (OperationalError, InterfaceError) as exc:
        logger.error('Availability check failed for venue %s: %s', venue_id, exc, extra={'venue_id': venue_id})
        raise StorageUnavailableError('Booking storage is unavailable, please retry') from exc

    decision = check_availability(
        venue,
        interval,
        occupying,
        today=day_utils.today(),
        guests=guests,
        enforce_capacity=settings.enforce_capacity_limits,
    )
    if not decision.accepted:
        logger.info(
            'Availability rejected for venue %s %s: %s',
            venue_id,
            interval,
            decision.rejection.kind.value,
            extra={'venue_id': venue_id},
        )
    decision.raise_for_rejection()
    return venue


@dataclass(frozen=True)
class AvailabilitySummary:
    venue_id: int
    blocked_dates: list[date]
    booked_dates: list[date]

    @property
    def unavailable_dates(self) -> list[date]:
        return sorted(set(self.blocked_dates) | set(self.booked_dates))


def get_availability(
    db: Session,
    *,
    venue_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
) -> AvailabilitySummary:
    if date_from is not None and date_to is not None and date_from > date_to:
        raise ValidationError('dateFrom cannot be after dateTo')

    try:
        venue = get_venue(db, venue_id)
        query = select(BookingDay.day).where(BookingDay.venue_id == venue_id)
        if date_from is not None:
            query = query.where(BookingDay.day >= date_from)
        if date_to is not None:
            query = query.where(BookingDay.day <= date_to)
        booked = set(db.execute(query).scalars().all())
    except (OperationalError, InterfaceError) as exc:
        raise StorageUnavailableError('Booking storage is unavailable, please retry') from exc

    blocked = {
        d
        for d in venue.blocked_dates
        if (date_from is None or d >= date_from) and (date_to is None or d <= date_to)
    }
    return AvailabilitySummary(venue_id=venue_id, blocked_dates=sorted(blocked), booked_dates=sorted(booked))

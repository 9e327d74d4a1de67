from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role
from venue_booking.models import BookingDay, Venue, VenueBlockedDate, VenueStatus
from venue_booking.services import dates as day_utils
from venue_booking.services.audit_service import log_audit
from venue_booking.services.errors import (
    AccessDeniedError,
    DateConflictError,
    DateInPastError,
    NotFoundError,
    ValidationError,
)


@dataclass(frozen=True)
class CapacityRange:
    min_guests: int | None = None
    max_guests: int | None = None

    def admits(self, guests: int) -> bool:
        if self.min_guests is not None and guests < self.min_guests:
            return False
        if self.max_guests is not None and guests > self.max_guests:
            return False
        return True


@dataclass(frozen=True)
class VenueSnapshot:
    id: int
    vendor_id: int
    name: str
    status: VenueStatus
    blocked_dates: frozenset[date] = field(default_factory=frozenset)
    capacity: CapacityRange = field(default_factory=CapacityRange)

    @property
    def is_bookable(self) -> bool:
        return self.status == VenueStatus.APPROVED


def _load_venue_row(db: Session, venue_id: int, *, lock: bool = False) -> Venue:
    query = select(Venue).where(Venue.id == venue_id)
    if lock:
        query = query.with_for_update()
    venue = db.execute(query).scalar_one_or_none()
    if not venue:
        raise NotFoundError('Venue not found')
    return venue


def blocked_dates_for(db: Session, venue_id: int) -> frozenset[date]:
    rows = db.execute(select(VenueBlockedDate.day).where(VenueBlockedDate.venue_id == venue_id)).scalars().all()
    return frozenset(rows)


def get_venue(db: Session, venue_id: int, *, lock: bool = False) -> VenueSnapshot:
    """Read-only view of a venue; ``lock`` serialises writers on the venue row."""
    venue = _load_venue_row(db, venue_id, lock=lock)
    return VenueSnapshot(
        id=venue.id,
        vendor_id=venue.vendor_id,
        name=venue.name,
        status=venue.status,
        blocked_dates=blocked_dates_for(db, venue.id),
        capacity=CapacityRange(min_guests=venue.min_guests, max_guests=venue.max_guests),
    )


def venue_ids_for_vendor(db: Session, vendor_id: int) -> list[int]:
    return db.execute(select(Venue.id).where(Venue.vendor_id == vendor_id).order_by(Venue.id.asc())).scalars().all()


def _assert_owner(principal: Principal, venue: Venue) -> None:
    if principal.role == Role.ADMIN:
        return
    if principal.role != Role.VENDOR or venue.vendor_id != principal.id:
        raise AccessDeniedError('You can only manage dates for your own venues')


def _parse_days(raw_dates: list) -> list[date]:
    if not raw_dates:
        raise ValidationError('At least one date is required')
    try:
        return sorted({day_utils.normalize_day(value) for value in raw_dates})
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def add_blocked_dates(
    db: Session,
    *,
    principal: Principal,
    venue_id: int,
    raw_dates: list,
) -> list[date]:
    venue = _load_venue_row(db, venue_id, lock=True)
    _assert_owner(principal, venue)
    days = _parse_days(raw_dates)

    current_day = day_utils.today()
    past = [d for d in days if d < current_day]
    if past:
        raise DateInPastError('Cannot block dates in the past', dates=past)

    occupied = db.execute(
        select(BookingDay.day, BookingDay.booking_id).where(
            BookingDay.venue_id == venue_id,
            BookingDay.day.in_(days),
        )
    ).all()
    if occupied:
        raise DateConflictError(
            'Some dates are already booked',
            dates=[row.day for row in occupied],
            booking_id=occupied[0].booking_id,
        )

    existing = blocked_dates_for(db, venue_id)
    new_days = [d for d in days if d not in existing]
    if not new_days:
        raise ValidationError('All dates are already blocked')

    db.add_all([VenueBlockedDate(venue_id=venue_id, day=d) for d in new_days])
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='VENUE_DATES_BLOCKED',
        metadata={'venue_id': venue_id, 'dates': [d.isoformat() for d in new_days]},
    )
    return sorted(existing | set(new_days))


def remove_blocked_dates(
    db: Session,
    *,
    principal: Principal,
    venue_id: int,
    raw_dates: list,
) -> list[date]:
    venue = _load_venue_row(db, venue_id, lock=True)
    _assert_owner(principal, venue)
    days = _parse_days(raw_dates)

    db.execute(
        delete(VenueBlockedDate).where(
            VenueBlockedDate.venue_id == venue_id,
            VenueBlockedDate.day.in_(days),
        )
    )
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='VENUE_DATES_UNBLOCKED',
        metadata={'venue_id': venue_id, 'dates': [d.isoformat() for d in days]},
    )
    return sorted(blocked_dates_for(db, venue_id))

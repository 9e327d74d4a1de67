from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role
from venue_booking.config import settings
from venue_booking.models import (
    Booking,
    BookingDay,
    BookingStatus,
    Lead,
    LeadSource,
    LeadStatus,
    PaymentStatus,
    Venue,
)
from venue_booking.services import dates as day_utils
from venue_booking.services.audit_service import log_audit
from venue_booking.services.availability_service import date_overlap_clause, ensure_available
from venue_booking.services.dates import DayInterval
from venue_booking.services.errors import (
    AccessDeniedError,
    DateConflictError,
    NotFoundError,
    ValidationError,
)
from venue_booking.services.ledger_service import post_income_best_effort
from venue_booking.services.venue_service import VenueSnapshot, venue_ids_for_vendor

logger = logging.getLogger(__name__)

EVENT_TYPES = ('wedding', 'party', 'birthday party', 'anniversary', 'engagement', 'reception', 'other')

RawDate = date | datetime | str | None


@dataclass
class BookingRequest:
    venue_id: int
    guests: int
    total_amount: Decimal | int | float | str | None = None
    date: RawDate = None
    date_from: RawDate = None
    date_to: RawDate = None
    payment_id: str | None = None
    device_id: str | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    event_type: str | None = None


@dataclass(frozen=True)
class RequestedDates:
    event_day: date
    date_from: date | None
    date_to: date | None
    interval: DayInterval


@dataclass
class CreateResult:
    type: str
    record: Booking | Lead


@dataclass
class BookingListing:
    bookings: list[Booking] = field(default_factory=list)
    leads: list[Lead] = field(default_factory=list)


def _normalize_optional(value: RawDate, *, field_name: str) -> date | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return day_utils.normalize_day(value)
    except ValueError as exc:
        raise ValidationError(f'Invalid {field_name} format') from exc


def _check_booking_window(interval: DayInterval) -> None:
    if interval.span_days > settings.max_booking_span_days:
        raise ValidationError(
            f'A booking can cover at most {settings.max_booking_span_days} days',
            dates=[interval.start, interval.end],
        )
    horizon = day_utils.today() + timedelta(days=settings.booking_horizon_days)
    if interval.end > horizon:
        raise ValidationError(
            f'Bookings can be made at most {settings.booking_horizon_days} days ahead',
            dates=[interval.end],
        )


def resolve_requested_dates(*, day: RawDate, date_from: RawDate, date_to: RawDate) -> RequestedDates:
    event_day = _normalize_optional(day, field_name='date')
    start = _normalize_optional(date_from, field_name='dateFrom')
    end = _normalize_optional(date_to, field_name='dateTo')

    if (start is None) != (end is None):
        raise ValidationError('dateFrom and dateTo must be provided together')
    if event_day is None and start is None:
        raise ValidationError('A date or a dateFrom/dateTo range is required')

    interval = DayInterval.from_fields(day=event_day, date_from=start, date_to=end)
    if event_day is not None and start is not None and interval.is_valid and not (start <= event_day <= end):
        raise ValidationError('date must fall within dateFrom..dateTo')
    if interval.is_valid:
        _check_booking_window(interval)
    return RequestedDates(
        event_day=event_day if event_day is not None else start,
        date_from=start,
        date_to=end,
        interval=interval,
    )


def _parse_amount(raw, *, allow_zero: bool) -> Decimal:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        if allow_zero:
            return Decimal('0')
        raise ValidationError('Total amount is required')
    try:
        amount = Decimal(str(raw)).quantize(Decimal('0.01'))
    except InvalidOperation as exc:
        raise ValidationError('Invalid total amount') from exc
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError('Total amount must be greater than 0')
    return amount


def _validate_common(request: BookingRequest) -> str:
    if not request.venue_id:
        raise ValidationError('Venue ID is required')
    if request.guests is None or int(request.guests) <= 0:
        raise ValidationError('Number of guests must be greater than 0')
    event_type = (request.event_type or 'wedding').strip().lower()
    if event_type not in EVENT_TYPES:
        raise ValidationError(f"eventType must be one of: {', '.join(EVENT_TYPES)}")
    return event_type


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def reserve_days(db: Session, *, booking: Booking, interval: DayInterval) -> None:
    """Claim every day of ``interval`` for ``booking``.

    The unique ``(venue_id, day)`` constraint makes the second of two racing
    writers fail here even when both passed the availability check.
    """
    try:
        with db.begin_nested():
            db.add_all([BookingDay(booking_id=booking.id, venue_id=booking.venue_id, day=d) for d in interval.days()])
            db.flush()
    except IntegrityError as exc:
        held = db.execute(
            select(BookingDay.day, BookingDay.booking_id).where(
                BookingDay.venue_id == booking.venue_id,
                BookingDay.day.in_(interval.days()),
            )
        ).all()
        logger.warning(
            'Concurrent booking lost the race for venue %s %s',
            booking.venue_id,
            interval,
            extra={'venue_id': booking.venue_id},
        )
        raise DateConflictError(
            'Venue is already booked for this date. Please select a different date.',
            dates=[row.day for row in held] or interval.days(),
            booking_id=held[0].booking_id if held else None,
        ) from exc


def release_days(db: Session, *, booking_id: int) -> None:
    db.execute(delete(BookingDay).where(BookingDay.booking_id == booking_id))


def insert_booking(
    db: Session,
    *,
    venue: VenueSnapshot,
    dates: RequestedDates,
    guests: int,
    total_amount: Decimal,
    customer_id: int | None,
    status: BookingStatus,
    payment_id: str | None,
    payment_status: PaymentStatus,
    admin_approved: bool,
    device_id: str | None = None,
    name: str | None = None,
    phone: str | None = None,
    event_type: str = 'wedding',
) -> Booking:
    booking = Booking(
        customer_id=customer_id,
        venue_id=venue.id,
        date=dates.event_day,
        date_from=dates.date_from,
        date_to=dates.date_to,
        name=name,
        phone=phone,
        event_type=event_type,
        guests=guests,
        total_amount=total_amount,
        status=status,
        payment_id=payment_id,
        payment_status=payment_status,
        admin_approved=admin_approved,
        device_id=device_id,
    )
    db.add(booking)
    db.flush()
    reserve_days(db, booking=booking, interval=dates.interval)
    return booking


def create_booking(
    db: Session,
    *,
    request: BookingRequest,
    principal: Principal | None = None,
    payment_verified: bool = False,
) -> CreateResult:
    """Inquiry without payment becomes a Lead; a request carrying a payment id becomes a Booking plus a linked Lead.

    The payment id is only trusted as settled when the caller vouches for it with
    ``payment_verified``; otherwise the booking waits with a pending payment.
    """
    event_type = _validate_common(request)
    amount = _parse_amount(request.total_amount, allow_zero=False)
    name = _clean(request.name)
    phone = _clean(request.phone)
    if principal is None and (not name or not phone):
        raise ValidationError('Name and phone are required when not logged in')

    dates = resolve_requested_dates(day=request.date, date_from=request.date_from, date_to=request.date_to)
    venue = ensure_available(db, venue_id=request.venue_id, interval=dates.interval, guests=int(request.guests))

    customer_id = principal.id if principal else None
    payment_id = _clean(request.payment_id)
    lead_fields = dict(
        customer_id=customer_id,
        device_id=_clean(request.device_id),
        venue_id=venue.id,
        date=dates.event_day,
        date_from=dates.date_from,
        date_to=dates.date_to,
        name=name,
        phone=phone,
        email=_clean(request.email),
        event_type=event_type,
        guests=int(request.guests),
        total_amount=amount,
    )

    if not payment_id:
        lead = Lead(**lead_fields, status=LeadStatus.NEW, source=LeadSource.INQUIRY)
        db.add(lead)
        db.flush()
        log_audit(db, actor_principal_id=customer_id, action='LEAD_CREATED', lead_id=lead.id)
        logger.info('Inquiry lead %s created for venue %s', lead.id, venue.id, extra={'lead_id': lead.id})
        return CreateResult(type='lead', record=lead)

    booking = insert_booking(
        db,
        venue=venue,
        dates=dates,
        guests=int(request.guests),
        total_amount=amount,
        customer_id=customer_id,
        status=BookingStatus.PENDING,
        payment_id=payment_id,
        payment_status=PaymentStatus.PAID if payment_verified else PaymentStatus.PENDING,
        admin_approved=False,
        device_id=lead_fields['device_id'],
        name=name,
        phone=phone,
        event_type=event_type,
    )
    lead = Lead(**lead_fields, booking_id=booking.id, status=LeadStatus.QUALIFIED, source=LeadSource.BOOKING)
    db.add(lead)
    db.flush()
    log_audit(
        db,
        actor_principal_id=customer_id,
        action='BOOKING_CREATED',
        booking_id=booking.id,
        lead_id=lead.id,
        metadata={'payment_id': payment_id, 'payment_verified': payment_verified},
    )
    logger.info(
        'Booking %s created for venue %s, payment %s',
        booking.id,
        venue.id,
        booking.payment_status.value,
        extra={'booking_id': booking.id},
    )
    return CreateResult(type='booking', record=booking)


def create_vendor_booking(db: Session, *, request: BookingRequest, principal: Principal) -> Booking:
    """Vendor-entered reservation: confirmed and approved on creation, no payment reference."""
    if principal.role != Role.VENDOR:
        raise AccessDeniedError('Vendor access required')
    event_type = _validate_common(request)
    name = _clean(request.name)
    phone = _clean(request.phone)
    if not name or not phone:
        raise ValidationError('Name and phone are required')
    amount = _parse_amount(request.total_amount, allow_zero=True)

    owner_id = db.execute(select(Venue.vendor_id).where(Venue.id == request.venue_id)).scalar_one_or_none()
    if owner_id is None:
        raise NotFoundError('Venue not found')
    if owner_id != principal.id:
        raise AccessDeniedError('You can only create bookings for your own venues')

    dates = resolve_requested_dates(day=request.date, date_from=request.date_from, date_to=request.date_to)
    venue = ensure_available(db, venue_id=request.venue_id, interval=dates.interval, guests=int(request.guests))

    booking = insert_booking(
        db,
        venue=venue,
        dates=dates,
        guests=int(request.guests),
        total_amount=amount,
        customer_id=None,
        status=BookingStatus.CONFIRMED,
        payment_id=None,
        payment_status=PaymentStatus.PAID,
        admin_approved=True,
        name=name,
        phone=phone,
        event_type=event_type,
    )
    log_audit(db, actor_principal_id=principal.id, action='VENDOR_BOOKING_CREATED', booking_id=booking.id)
    logger.info('Vendor booking %s created for venue %s', booking.id, venue.id, extra={'booking_id': booking.id})
    if booking.total_amount > 0:
        post_income_best_effort(db, booking=booking, venue=venue)
    return booking


def get_booking(db: Session, booking_id: int, *, lock: bool = False) -> Booking:
    query = select(Booking).where(Booking.id == booking_id)
    if lock:
        query = query.with_for_update()
    booking = db.execute(query).scalar_one_or_none()
    if not booking:
        raise NotFoundError('Booking not found')
    return booking


def venue_owner_id(db: Session, venue_id: int) -> int | None:
    return db.execute(select(Venue.vendor_id).where(Venue.id == venue_id)).scalar_one_or_none()


def get_booking_for_principal(
    db: Session,
    booking_id: int,
    *,
    principal: Principal | None,
    device_id: str | None = None,
) -> Booking:
    booking = get_booking(db, booking_id)
    if principal is None:
        if not device_id or booking.device_id != device_id:
            raise AccessDeniedError('Access denied')
        return booking
    if principal.role == Role.ADMIN:
        return booking
    if principal.role == Role.VENDOR:
        if not booking.admin_approved or venue_owner_id(db, booking.venue_id) != principal.id:
            raise AccessDeniedError('Access denied')
        return booking
    if booking.customer_id != principal.id and not (device_id and booking.device_id == device_id):
        raise AccessDeniedError('Access denied')
    return booking


def list_bookings(
    db: Session,
    *,
    principal: Principal | None,
    status: BookingStatus | None = None,
    venue_id: int | None = None,
    device_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> BookingListing:
    booking_conditions = []
    lead_conditions = []
    include_leads = False

    if principal is None:
        if not device_id:
            return BookingListing()
        booking_conditions.append(Booking.device_id == device_id)
        lead_conditions.append(Lead.device_id == device_id)
        include_leads = True
    elif principal.role == Role.ADMIN:
        pass
    elif principal.role == Role.VENDOR:
        venue_ids = venue_ids_for_vendor(db, principal.id)
        if not venue_ids:
            return BookingListing()
        booking_conditions.append(Booking.admin_approved.is_(True))
        booking_conditions.append(Booking.venue_id.in_(venue_ids))
    else:
        if device_id:
            booking_conditions.append(or_(Booking.customer_id == principal.id, Booking.device_id == device_id))
            lead_conditions.append(or_(Lead.customer_id == principal.id, Lead.device_id == device_id))
        else:
            booking_conditions.append(Booking.customer_id == principal.id)
            lead_conditions.append(Lead.customer_id == principal.id)
        include_leads = True

    if status is not None:
        booking_conditions.append(Booking.status == status)
    if venue_id is not None:
        booking_conditions.append(Booking.venue_id == venue_id)
        lead_conditions.append(Lead.venue_id == venue_id)
    if date_from is not None or date_to is not None:
        booking_conditions.append(date_overlap_clause(Booking, start=date_from, end=date_to))
        lead_conditions.append(date_overlap_clause(Lead, start=date_from, end=date_to))

    query = select(Booking).order_by(Booking.created_at.desc(), Booking.id.desc())
    if booking_conditions:
        query = query.where(and_(*booking_conditions))
    bookings = db.execute(query).scalars().all()

    leads: list[Lead] = []
    if include_leads:
        # Promoted leads are already represented by their booking.
        lead_query = (
            select(Lead)
            .where(Lead.booking_id.is_(None), *lead_conditions)
            .order_by(Lead.created_at.desc(), Lead.id.desc())
        )
        leads = db.execute(lead_query).scalars().all()

    return BookingListing(bookings=list(bookings), leads=list(leads))


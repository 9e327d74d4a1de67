from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role
from venue_booking.models import TERMINAL_STATUSES, Booking, BookingStatus, LeadStatus
from venue_booking.services.audit_service import log_audit
from venue_booking.services.booking_service import get_booking, release_days, venue_owner_id
from venue_booking.services.errors import AccessDeniedError, ValidationError
from venue_booking.services.lead_service import mark_booking_lead
from venue_booking.services.ledger_service import post_income_best_effort
from venue_booking.services.venue_service import get_venue

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.FAILED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.FAILED: frozenset(),
}

VENDOR_TARGETS = frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED})
CUSTOMER_TARGETS = frozenset({BookingStatus.CANCELLED})


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


def _authorize(db: Session, *, booking: Booking, target: BookingStatus, principal: Principal) -> None:
    if principal.role == Role.ADMIN:
        return
    if principal.role == Role.VENDOR:
        # Unapproved bookings do not exist for vendors, whoever owns the venue.
        if not booking.admin_approved:
            raise AccessDeniedError('Booking is awaiting admin approval', booking_id=booking.id)
        if venue_owner_id(db, booking.venue_id) != principal.id:
            raise AccessDeniedError('You can only manage bookings for your own venues', booking_id=booking.id)
        if target not in VENDOR_TARGETS:
            raise AccessDeniedError('Vendors can only confirm or cancel bookings', booking_id=booking.id)
        return
    if booking.customer_id != principal.id:
        raise AccessDeniedError('You can only manage your own bookings', booking_id=booking.id)
    if target not in CUSTOMER_TARGETS:
        raise AccessDeniedError('Customers can only cancel bookings', booking_id=booking.id)


def _apply_side_effects(db: Session, *, booking: Booking, notes: str | None = None) -> None:
    if booking.status == BookingStatus.CONFIRMED:
        mark_booking_lead(db, booking_id=booking.id, status=LeadStatus.CONVERTED)
        venue = get_venue(db, booking.venue_id)
        post_income_best_effort(db, booking=booking, venue=venue)
    elif booking.status in TERMINAL_STATUSES:
        mark_booking_lead(db, booking_id=booking.id, status=LeadStatus.LOST, notes=notes)
        release_days(db, booking_id=booking.id)


def _transition(
    db: Session,
    *,
    booking: Booking,
    target: BookingStatus,
    principal: Principal | None,
    action: str,
    notes: str | None = None,
) -> Booking:
    current = booking.status
    if not can_transition(current, target):
        raise ValidationError(
            f'Cannot change booking status from {current.value} to {target.value}',
            booking_id=booking.id,
        )

    if current != target:
        booking.status = target
        db.flush()
        logger.info(
            'Booking %s moved %s -> %s',
            booking.id,
            current.value,
            target.value,
            extra={'booking_id': booking.id},
        )
    else:
        logger.info('Booking %s already %s, replaying side effects', booking.id, target.value, extra={'booking_id': booking.id})

    _apply_side_effects(db, booking=booking, notes=notes)
    log_audit(
        db,
        actor_principal_id=principal.id if principal else None,
        action=action,
        booking_id=booking.id,
        metadata={'from': current.value, 'to': target.value},
    )
    return booking


def update_booking_status(
    db: Session,
    *,
    booking_id: int,
    status: BookingStatus,
    principal: Principal,
) -> Booking:
    booking = get_booking(db, booking_id, lock=True)
    _authorize(db, booking=booking, target=status, principal=principal)
    return _transition(db, booking=booking, target=status, principal=principal, action='BOOKING_STATUS_CHANGED')


def approve_booking(db: Session, *, booking_id: int, principal: Principal) -> Booking:
    if principal.role != Role.ADMIN:
        raise AccessDeniedError('Admin access required')
    booking = get_booking(db, booking_id, lock=True)
    if booking.status in TERMINAL_STATUSES:
        raise ValidationError(f'Cannot approve a {booking.status.value} booking', booking_id=booking.id)
    booking.admin_approved = True
    db.flush()
    log_audit(db, actor_principal_id=principal.id, action='BOOKING_APPROVED', booking_id=booking.id)
    logger.info('Booking %s approved', booking.id, extra={'booking_id': booking.id, 'principal_id': principal.id})
    return booking


def reject_booking(db: Session, *, booking_id: int, principal: Principal, reason: str | None = None) -> Booking:
    if principal.role != Role.ADMIN:
        raise AccessDeniedError('Admin access required')
    booking = get_booking(db, booking_id, lock=True)
    reason = (reason or '').strip()
    notes = f'Rejected: {reason}' if reason else 'Booking rejected by admin'

    booking.admin_approved = False
    if can_transition(booking.status, BookingStatus.CANCELLED):
        _transition(
            db,
            booking=booking,
            target=BookingStatus.CANCELLED,
            principal=principal,
            action='BOOKING_REJECTED',
            notes=notes,
        )
    else:
        mark_booking_lead(db, booking_id=booking.id, status=LeadStatus.LOST, notes=notes)
        log_audit(
            db,
            actor_principal_id=principal.id,
            action='BOOKING_REJECTED',
            booking_id=booking.id,
            metadata={'from': booking.status.value, 'to': booking.status.value},
        )
    db.flush()
    logger.info('Booking %s rejected', booking.id, extra={'booking_id': booking.id, 'principal_id': principal.id})
    return booking

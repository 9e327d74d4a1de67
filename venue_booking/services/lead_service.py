from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role
from venue_booking.models import (
    Booking,
    BookingStatus,
    Lead,
    LeadSource,
    LeadStatus,
    PaymentStatus,
)
from venue_booking.services.audit_service import log_audit
from venue_booking.services.availability_service import ensure_available
from venue_booking.services.booking_service import RequestedDates, insert_booking, resolve_requested_dates
from venue_booking.services.errors import AccessDeniedError, AlreadyPromotedError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def get_lead(db: Session, lead_id: int, *, lock: bool = False) -> Lead:
    query = select(Lead).where(Lead.id == lead_id)
    if lock:
        query = query.with_for_update()
    lead = db.execute(query).scalar_one_or_none()
    if not lead:
        raise NotFoundError('Lead not found')
    return lead


def lead_for_booking(db: Session, booking_id: int) -> Lead | None:
    return db.execute(select(Lead).where(Lead.booking_id == booking_id)).scalar_one_or_none()


def _lead_dates(lead: Lead) -> RequestedDates:
    return resolve_requested_dates(day=lead.date, date_from=lead.date_from, date_to=lead.date_to)


def _lead_to_booking(
    db: Session,
    *,
    lead_id: int,
    payment_ref: str | None,
    principal: Principal | None,
    action: str,
) -> Booking:
    lead = get_lead(db, lead_id, lock=True)
    if lead.booking_id is not None:
        existing = db.get(Booking, lead.booking_id)
        if payment_ref and existing is not None and existing.payment_id == payment_ref:
            logger.info(
                'Lead %s already promoted to booking %s, replay ignored',
                lead.id,
                existing.id,
                extra={'lead_id': lead.id, 'booking_id': existing.id},
            )
            return existing
        raise AlreadyPromotedError('Lead has already been converted to a booking', booking_id=lead.booking_id)

    dates = _lead_dates(lead)
    venue = ensure_available(db, venue_id=lead.venue_id, interval=dates.interval, guests=lead.guests)

    booking = insert_booking(
        db,
        venue=venue,
        dates=dates,
        guests=lead.guests,
        total_amount=lead.total_amount,
        customer_id=lead.customer_id,
        status=BookingStatus.PENDING,
        payment_id=payment_ref,
        payment_status=PaymentStatus.PAID if payment_ref else PaymentStatus.PENDING,
        admin_approved=False,
        device_id=lead.device_id,
        name=lead.name,
        phone=lead.phone,
        event_type=lead.event_type,
    )

    lead.booking_id = booking.id
    lead.status = LeadStatus.QUALIFIED
    # An unpaid conversion stays an inquiry until the money arrives.
    if payment_ref:
        lead.source = LeadSource.BOOKING
    db.flush()

    log_audit(
        db,
        actor_principal_id=principal.id if principal else None,
        action=action,
        booking_id=booking.id,
        lead_id=lead.id,
        metadata={'payment_id': payment_ref},
    )
    logger.info(
        'Lead %s converted to booking %s, payment %s',
        lead.id,
        booking.id,
        booking.payment_status.value,
        extra={'lead_id': lead.id, 'booking_id': booking.id, 'venue_id': venue.id},
    )
    return booking


def promote_lead(
    db: Session,
    *,
    lead_id: int,
    payment_ref: str,
    principal: Principal | None = None,
) -> Booking:
    """Turn a paid lead into a pending booking.

    Replaying the same payment reference returns the booking created the
    first time. The lead row stays locked until the caller commits.
    """
    payment_ref = (payment_ref or '').strip()
    if not payment_ref:
        raise ValidationError('Payment reference is required')
    return _lead_to_booking(db, lead_id=lead_id, payment_ref=payment_ref, principal=principal, action='LEAD_PROMOTED')


def convert_lead(
    db: Session,
    *,
    lead_id: int,
    principal: Principal,
    payment_ref: str | None = None,
) -> Booking:
    """Admin conversion of a lead; without a payment reference the booking awaits payment."""
    if principal.role != Role.ADMIN:
        raise AccessDeniedError('Admin access required')
    payment_ref = (payment_ref or '').strip() or None
    return _lead_to_booking(db, lead_id=lead_id, payment_ref=payment_ref, principal=principal, action='LEAD_CONVERTED')


def list_leads(
    db: Session,
    *,
    status: LeadStatus | None = None,
    source: LeadSource | None = None,
    venue_id: int | None = None,
    search: str | None = None,
) -> list[Lead]:
    query = select(Lead)
    if status is not None:
        query = query.where(Lead.status == status)
    if source is not None:
        query = query.where(Lead.source == source)
    if venue_id is not None:
        query = query.where(Lead.venue_id == venue_id)
    if search and search.strip():
        needle = f'%{search.strip()}%'
        query = query.where(or_(Lead.name.ilike(needle), Lead.phone.ilike(needle), Lead.email.ilike(needle)))
    return db.execute(query.order_by(Lead.created_at.desc(), Lead.id.desc())).scalars().all()


def update_lead_status(
    db: Session,
    *,
    lead_id: int,
    status: LeadStatus,
    principal: Principal,
    notes: str | None = None,
) -> Lead:
    lead = get_lead(db, lead_id, lock=True)
    previous = lead.status
    lead.status = status
    if notes is not None:
        lead.notes = notes.strip() or None
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='LEAD_STATUS_UPDATED',
        lead_id=lead.id,
        metadata={'from': previous.value, 'to': status.value},
    )
    return lead


def mark_booking_lead(db: Session, *, booking_id: int, status: LeadStatus, notes: str | None = None) -> Lead | None:
    lead = lead_for_booking(db, booking_id)
    if lead is None:
        return None
    lead.status = status
    if notes is not None:
        lead.notes = notes
    db.flush()
    return lead

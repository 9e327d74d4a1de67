from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role, require_role
from venue_booking.db import get_db
from venue_booking.dependencies import http_error
from venue_booking.models import LeadSource, LeadStatus
from venue_booking.schemas import (
    BookingReject,
    LeadConvert,
    LeadStatusUpdate,
    backfill_to_dict,
    booking_to_dict,
    lead_to_dict,
)
from venue_booking.services.booking_status_service import approve_booking, reject_booking
from venue_booking.services.errors import BookingError
from venue_booking.services.lead_service import convert_lead, list_leads, update_lead_status
from venue_booking.services.ledger_service import backfill_income

router = APIRouter(prefix='/admin', tags=['admin'])
admin_access = require_role(Role.ADMIN)


@router.post('/bookings/{booking_id}/approve')
def approve(
    booking_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    try:
        booking = approve_booking(db, booking_id=booking_id, principal=principal)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'message': 'Booking approved successfully', 'booking': booking_to_dict(booking)}


@router.post('/bookings/{booking_id}/reject')
def reject(
    booking_id: int,
    payload: BookingReject | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    try:
        booking = reject_booking(
            db,
            booking_id=booking_id,
            principal=principal,
            reason=payload.reason if payload else None,
        )
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'message': 'Booking rejected', 'booking': booking_to_dict(booking)}


@router.get('/leads')
def leads(
    status_filter: LeadStatus | None = Query(default=None, alias='status'),
    source: LeadSource | None = None,
    venue_id: int | None = Query(default=None, alias='venueId'),
    search: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    rows = list_leads(db, status=status_filter, source=source, venue_id=venue_id, search=search)
    return {'leads': [lead_to_dict(lead) for lead in rows]}


@router.patch('/leads/{lead_id}')
def update_lead(
    lead_id: int,
    payload: LeadStatusUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    try:
        lead = update_lead_status(db, lead_id=lead_id, status=payload.status, principal=principal, notes=payload.notes)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'lead': lead_to_dict(lead)}


@router.post('/leads/{lead_id}/convert')
def convert(
    lead_id: int,
    payload: LeadConvert | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    payment_id = payload.payment_id if payload else None
    try:
        booking = convert_lead(db, lead_id=lead_id, principal=principal, payment_ref=payment_id)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    if booking.payment_id:
        message = 'Lead converted to booking with payment. Waiting for admin approval.'
    else:
        message = 'Lead converted to booking. Payment pending.'
    return {'message': message, 'booking': booking_to_dict(booking)}


@router.post('/ledger/backfill')
def ledger_backfill(
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    summary = backfill_income(db)
    db.commit()
    return backfill_to_dict(summary)

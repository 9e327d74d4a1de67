from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, get_current_principal, get_optional_principal
from venue_booking.db import get_db
from venue_booking.dependencies import get_device_id, has_payment_authority, http_error
from venue_booking.models import BookingStatus
from venue_booking.schemas import BookingCreate, BookingStatusUpdate, booking_to_dict, lead_to_dict
from venue_booking.services import dates as day_utils
from venue_booking.services.booking_service import create_booking, get_booking_for_principal, list_bookings
from venue_booking.services.booking_status_service import update_booking_status
from venue_booking.services.errors import BookingError

router = APIRouter(prefix='/bookings', tags=['bookings'])


def _parse_filter_day(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return day_utils.normalize_day(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid date filter') from exc


@router.post('', status_code=status.HTTP_201_CREATED)
def create_booking_route(
    payload: BookingCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    booking_request = payload.to_request()
    if not booking_request.device_id:
        booking_request.device_id = get_device_id(request)
    try:
        result = create_booking(
            db,
            request=booking_request,
            principal=principal,
            payment_verified=has_payment_authority(request, principal),
        )
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    if result.type == 'lead':
        return {
            'type': 'lead',
            'message': 'Inquiry received. Complete payment to confirm your booking.',
            'lead': lead_to_dict(result.record),
        }
    return {
        'type': 'booking',
        'message': 'Booking request submitted. It will be confirmed after admin approval.',
        'booking': booking_to_dict(result.record),
    }


@router.get('')
def list_bookings_route(
    request: Request,
    status_filter: BookingStatus | None = Query(default=None, alias='status'),
    venue_id: int | None = Query(default=None, alias='venueId'),
    date_from: str | None = Query(default=None, alias='dateFrom'),
    date_to: str | None = Query(default=None, alias='dateTo'),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    try:
        listing = list_bookings(
            db,
            principal=principal,
            status=status_filter,
            venue_id=venue_id,
            device_id=get_device_id(request),
            date_from=_parse_filter_day(date_from),
            date_to=_parse_filter_day(date_to),
        )
    except BookingError as exc:
        raise http_error(exc) from exc

    return {
        'bookings': [booking_to_dict(booking) for booking in listing.bookings],
        'leads': [lead_to_dict(lead) for lead in listing.leads],
    }


@router.get('/{booking_id}')
def get_booking_route(
    booking_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    try:
        booking = get_booking_for_principal(db, booking_id, principal=principal, device_id=get_device_id(request))
    except BookingError as exc:
        raise http_error(exc) from exc
    return {'booking': booking_to_dict(booking)}


@router.patch('/{booking_id}/status')
def update_booking_status_route(
    booking_id: int,
    payload: BookingStatusUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        booking = update_booking_status(db, booking_id=booking_id, status=payload.status, principal=principal)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'booking': booking_to_dict(booking)}

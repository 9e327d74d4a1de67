from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role, require_role
from venue_booking.db import get_db
from venue_booking.dependencies import http_error
from venue_booking.models import LedgerEntryType
from venue_booking.schemas import (
    BlockedDatesUpdate,
    BookingCreate,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    booking_to_dict,
    ledger_entry_to_dict,
    vendor_ledger_to_dict,
)
from venue_booking.services import dates as day_utils
from venue_booking.services.booking_service import create_vendor_booking
from venue_booking.services.errors import BookingError
from venue_booking.services.ledger_service import (
    add_ledger_entry,
    delete_ledger_entry,
    update_ledger_entry,
    vendor_ledger,
)
from venue_booking.services.venue_service import add_blocked_dates, remove_blocked_dates

router = APIRouter(prefix='/vendor', tags=['vendor'])
vendor_access = require_role(Role.VENDOR)
venue_manager_access = require_role(Role.VENDOR, Role.ADMIN)


@router.post('/bookings', status_code=status.HTTP_201_CREATED)
def create_vendor_booking_route(
    payload: BookingCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(vendor_access),
):
    try:
        booking = create_vendor_booking(db, request=payload.to_request(), principal=principal)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'booking': booking_to_dict(booking)}


@router.post('/venues/{venue_id}/blocked-dates')
def block_dates(
    venue_id: int,
    payload: BlockedDatesUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(venue_manager_access),
):
    try:
        blocked = add_blocked_dates(db, principal=principal, venue_id=venue_id, raw_dates=payload.dates)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'venueId': venue_id, 'blockedDates': [d.isoformat() for d in blocked]}


@router.delete('/venues/{venue_id}/blocked-dates')
def unblock_dates(
    venue_id: int,
    payload: BlockedDatesUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(venue_manager_access),
):
    try:
        blocked = remove_blocked_dates(db, principal=principal, venue_id=venue_id, raw_dates=payload.dates)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'venueId': venue_id, 'blockedDates': [d.isoformat() for d in blocked]}


@router.get('/ledger')
def ledger(
    entry_type: LedgerEntryType | None = Query(default=None, alias='type'),
    date_from: str | None = Query(default=None, alias='dateFrom'),
    date_to: str | None = Query(default=None, alias='dateTo'),
    db: Session = Depends(get_db),
    principal: Principal = Depends(vendor_access),
):
    try:
        start = day_utils.normalize_day(date_from) if date_from else None
        end = day_utils.normalize_day(date_to) if date_to else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid date filter') from exc

    result = vendor_ledger(db, vendor_id=principal.id, entry_type=entry_type, date_from=start, date_to=end)
    return vendor_ledger_to_dict(result)


@router.post('/ledger', status_code=status.HTTP_201_CREATED)
def add_ledger(
    payload: LedgerEntryCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(vendor_access),
):
    try:
        entry = add_ledger_entry(
            db,
            principal=principal,
            entry_type=payload.type,
            category=payload.category,
            description=payload.description,
            amount=payload.amount,
            entry_date=payload.date,
            status=payload.status,
            reference=payload.reference,
            venue_id=payload.venue_id,
            notes=payload.notes,
        )
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'message': 'Ledger entry added successfully', 'entry': ledger_entry_to_dict(entry)}


@router.patch('/ledger/{entry_id}')
def update_ledger(
    entry_id: int,
    payload: LedgerEntryUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(vendor_access),
):
    try:
        entry = update_ledger_entry(
            db,
            principal=principal,
            entry_id=entry_id,
            changes=payload.model_dump(exclude_unset=True),
        )
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'message': 'Ledger entry updated successfully', 'entry': ledger_entry_to_dict(entry)}


@router.delete('/ledger/{entry_id}')
def delete_ledger(
    entry_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(vendor_access),
):
    try:
        delete_ledger_entry(db, principal=principal, entry_id=entry_id)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'message': 'Ledger entry deleted successfully'}

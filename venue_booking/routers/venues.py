from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from venue_booking.db import get_db
from venue_booking.dependencies import http_error
from venue_booking.schemas import availability_to_dict
from venue_booking.services import dates as day_utils
from venue_booking.services.availability_service import get_availability
from venue_booking.services.errors import BookingError, ValidationError

router = APIRouter(prefix='/venues', tags=['venues'])


@router.get('/{venue_id}/availability')
def availability(
    venue_id: int,
    date_from: str | None = Query(default=None, alias='dateFrom'),
    date_to: str | None = Query(default=None, alias='dateTo'),
    db: Session = Depends(get_db),
):
    try:
        try:
            start = day_utils.normalize_day(date_from) if date_from else None
            end = day_utils.normalize_day(date_to) if date_to else None
        except ValueError as exc:
            raise ValidationError('Invalid date filter') from exc
        summary = get_availability(db, venue_id=venue_id, date_from=start, date_to=end)
    except BookingError as exc:
        raise http_error(exc) from exc
    return availability_to_dict(summary)

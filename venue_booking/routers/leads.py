from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from venue_booking.auth import Principal
from venue_booking.db import get_db
from venue_booking.dependencies import http_error, require_payment_authority
from venue_booking.schemas import LeadPromote, booking_to_dict
from venue_booking.services.errors import BookingError
from venue_booking.services.lead_service import promote_lead

router = APIRouter(prefix='/leads', tags=['leads'])


@router.post('/{lead_id}/promote')
def promote_lead_route(
    lead_id: int,
    payload: LeadPromote,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(require_payment_authority),
):
    try:
        booking = promote_lead(db, lead_id=lead_id, payment_ref=payload.payment_ref, principal=principal)
    except BookingError as exc:
        raise http_error(exc) from exc

    db.commit()
    return {'booking': booking_to_dict(booking)}

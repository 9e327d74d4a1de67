from __future__ import annotations

from sqlalchemy.orm import Session

from venue_booking.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    booking_id: int | None = None,
    lead_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_principal_id=actor_principal_id,
            action=action,
            booking_id=booking_id,
            lead_id=lead_id,
            meta=metadata or {},
        )
    )

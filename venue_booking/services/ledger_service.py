from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from venue_booking.auth import Principal, Role
from venue_booking.config import settings
from venue_booking.models import (
    Booking,
    LedgerEntry,
    LedgerEntrySource,
    LedgerEntryStatus,
    LedgerEntryType,
    PaymentStatus,
    Venue,
)
from venue_booking.services import dates as day_utils
from venue_booking.services.audit_service import log_audit
from venue_booking.services.errors import AccessDeniedError, NotFoundError, ValidationError
from venue_booking.services.venue_service import VenueSnapshot

logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    total: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    error_booking_ids: list[int] = field(default_factory=list)


@dataclass
class VendorLedger:
    entries: list[LedgerEntry]
    total_income: Decimal
    total_expense: Decimal

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expense


def booking_reference(booking_id: int) -> str:
    """Human reference for a booking's income entry, e.g. ``Booking #000042``."""
    return f"Booking #{f'{booking_id:06d}'[-6:]}"


def _entry_day(booking: Booking) -> date:
    if booking.date is not None:
        return booking.date
    if booking.date_from is not None:
        return booking.date_from
    return day_utils.normalize_day(booking.created_at) if booking.created_at else day_utils.today()


def _entry_status(booking: Booking) -> LedgerEntryStatus:
    if booking.payment_status == PaymentStatus.PAID:
        return LedgerEntryStatus.PAID
    return LedgerEntryStatus.PENDING


def find_entry(db: Session, *, vendor_id: int, venue_id: int, reference: str) -> LedgerEntry | None:
    return db.execute(
        select(LedgerEntry).where(
            LedgerEntry.vendor_id == vendor_id,
            LedgerEntry.venue_id == venue_id,
            LedgerEntry.reference == reference,
            LedgerEntry.source == LedgerEntrySource.BOOKING,
        )
    ).scalar_one_or_none()


def upsert_income_entry(
    db: Session,
    *,
    vendor_id: int,
    venue_id: int,
    reference: str,
    description: str,
    amount: Decimal,
    entry_date: date,
    status: LedgerEntryStatus,
    notes: str | None = None,
) -> tuple[LedgerEntry, bool]:
    """Insert an income entry unless one already exists for ``(vendor, venue, reference)``."""
    existing = find_entry(db, vendor_id=vendor_id, venue_id=venue_id, reference=reference)
    if existing:
        return existing, False

    entry = LedgerEntry(
        vendor_id=vendor_id,
        venue_id=venue_id,
        type=LedgerEntryType.INCOME,
        category=settings.ledger_category,
        description=description,
        amount=amount,
        date=entry_date,
        status=status,
        reference=reference,
        notes=notes,
        source=LedgerEntrySource.BOOKING,
    )
    db.add(entry)
    db.flush()
    return entry, True


def post_income(
    db: Session,
    *,
    booking: Booking,
    venue: VenueSnapshot | Venue,
    note_verb: str = 'confirmed',
) -> tuple[LedgerEntry, bool]:
    reference = booking_reference(booking.id)
    entry, created = upsert_income_entry(
        db,
        vendor_id=venue.vendor_id,
        venue_id=venue.id,
        reference=reference,
        description=f'Booking for {venue.name}',
        amount=booking.total_amount,
        entry_date=_entry_day(booking),
        status=_entry_status(booking),
        notes=f'Booking {note_verb} for {booking.name or "Customer"} - {booking.guests} guests',
    )
    if created:
        log_audit(
            db,
            actor_principal_id=None,
            action='LEDGER_ENTRY_CREATED',
            booking_id=booking.id,
            metadata={'ledger_entry_id': entry.id, 'reference': reference, 'amount': str(entry.amount)},
        )
        logger.info(
            'Ledger entry %s created for booking %s',
            entry.id,
            booking.id,
            extra={'booking_id': booking.id, 'vendor_id': venue.vendor_id, 'reference': reference},
        )
    else:
        logger.info(
            'Ledger entry already exists for booking %s',
            booking.id,
            extra={'booking_id': booking.id, 'vendor_id': venue.vendor_id, 'reference': reference},
        )
    return entry, created


def post_income_best_effort(
    db: Session,
    *,
    booking: Booking,
    venue: VenueSnapshot | Venue,
) -> LedgerEntry | None:
    """Post income inside a savepoint; a failure is logged and never propagates."""
    try:
        with db.begin_nested():
            entry, _ = post_income(db, booking=booking, venue=venue)
        return entry
    except Exception:
        logger.exception('Failed to post ledger entry for booking %s', booking.id, extra={'booking_id': booking.id})
        return None


def backfill_income(db: Session) -> BackfillSummary:
    """Create missing income entries for approved, paid bookings with a positive amount."""
    bookings = (
        db.execute(
            select(Booking)
            .where(
                Booking.admin_approved.is_(True),
                Booking.payment_status == PaymentStatus.PAID,
                Booking.total_amount > 0,
            )
            .order_by(Booking.id.asc())
        )
        .scalars()
        .all()
    )
    summary = BackfillSummary(total=len(bookings))
    for booking in bookings:
        try:
            with db.begin_nested():
                venue = db.get(Venue, booking.venue_id)
                if venue is None:
                    raise LookupError(f'Venue {booking.venue_id} not found')
                _, created = post_income(db, booking=booking, venue=venue, note_verb='approved')
        except Exception:
            logger.exception('Backfill failed for booking %s', booking.id, extra={'booking_id': booking.id})
            summary.errors += 1
            summary.error_booking_ids.append(booking.id)
            continue
        if created:
            summary.created += 1
        else:
            summary.skipped += 1

    logger.info(
        'Ledger backfill finished: %s created, %s skipped, %s errors of %s bookings',
        summary.created,
        summary.skipped,
        summary.errors,
        summary.total,
    )
    return summary


def vendor_ledger(
    db: Session,
    *,
    vendor_id: int,
    entry_type: LedgerEntryType | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> VendorLedger:
    query = select(LedgerEntry).where(LedgerEntry.vendor_id == vendor_id)
    if entry_type is not None:
        query = query.where(LedgerEntry.type == entry_type)
    if date_from is not None:
        query = query.where(LedgerEntry.date >= date_from)
    if date_to is not None:
        query = query.where(LedgerEntry.date <= date_to)
    entries = db.execute(query.order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc())).scalars().all()

    total_income = Decimal('0')
    total_expense = Decimal('0')
    for entry in entries:
        if entry.status == LedgerEntryStatus.CANCELLED:
            continue
        if entry.type == LedgerEntryType.INCOME:
            total_income += entry.amount
        else:
            total_expense += entry.amount
    return VendorLedger(entries=list(entries), total_income=total_income, total_expense=total_expense)


MANUAL_FIELDS = frozenset(
    {'type', 'category', 'description', 'amount', 'date', 'status', 'reference', 'venue_id', 'notes'}
)


def _require_vendor(principal: Principal) -> None:
    if principal.role != Role.VENDOR:
        raise AccessDeniedError('Vendor access required')


def _required_text(value: str | None, label: str) -> str:
    value = (value or '').strip()
    if not value:
        raise ValidationError(f'{label} is required')
    return value


def _optional_text(value: str | None) -> str | None:
    return (value or '').strip() or None


def _entry_type(raw) -> LedgerEntryType:
    try:
        return LedgerEntryType(raw)
    except ValueError as exc:
        raise ValidationError('Type must be income or expense') from exc


def _manual_status(raw) -> LedgerEntryStatus:
    if raw is None:
        return LedgerEntryStatus.PAID
    try:
        return LedgerEntryStatus(raw)
    except ValueError as exc:
        raise ValidationError(f'Unknown ledger status: {raw}') from exc


def _positive_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Amount must be greater than 0') from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError('Amount must be greater than 0')
    return amount.quantize(Decimal('0.01'))


def _manual_day(raw) -> date:
    if raw is None:
        return day_utils.today()
    try:
        return day_utils.normalize_day(raw)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _owned_venue_id(db: Session, *, principal: Principal, venue_id: int | None) -> int | None:
    if venue_id is None:
        return None
    owner_id = db.execute(select(Venue.vendor_id).where(Venue.id == venue_id)).scalar_one_or_none()
    if owner_id is None:
        raise NotFoundError('Venue not found')
    if owner_id != principal.id:
        raise AccessDeniedError('You can only use your own venues')
    return venue_id


def get_manual_entry(db: Session, *, principal: Principal, entry_id: int) -> LedgerEntry:
    _require_vendor(principal)
    entry = db.execute(select(LedgerEntry).where(LedgerEntry.id == entry_id).with_for_update()).scalar_one_or_none()
    if entry is None:
        raise NotFoundError('Ledger entry not found')
    if entry.vendor_id != principal.id:
        raise AccessDeniedError('You can only manage your own ledger entries')
    if entry.source != LedgerEntrySource.MANUAL:
        raise ValidationError('Booking income entries cannot be edited by hand')
    return entry


def add_ledger_entry(
    db: Session,
    *,
    principal: Principal,
    entry_type,
    category: str | None,
    description: str | None,
    amount,
    entry_date=None,
    status=None,
    reference: str | None = None,
    venue_id: int | None = None,
    notes: str | None = None,
) -> LedgerEntry:
    """Record a vendor's own income or expense line.

    Manual entries sit beside booking postings but never take part in their
    ``(vendor, venue, reference)`` deduplication.
    """
    _require_vendor(principal)
    entry = LedgerEntry(
        vendor_id=principal.id,
        type=_entry_type(entry_type),
        category=_required_text(category, 'Category'),
        description=_required_text(description, 'Description'),
        amount=_positive_amount(amount),
        date=_manual_day(entry_date),
        status=_manual_status(status),
        reference=_optional_text(reference),
        venue_id=_owned_venue_id(db, principal=principal, venue_id=venue_id),
        notes=_optional_text(notes),
        source=LedgerEntrySource.MANUAL,
    )
    db.add(entry)
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='LEDGER_ENTRY_ADDED',
        metadata={'ledger_entry_id': entry.id, 'type': entry.type.value, 'amount': str(entry.amount)},
    )
    logger.info('Manual ledger entry %s added', entry.id, extra={'vendor_id': principal.id})
    return entry


def update_ledger_entry(db: Session, *, principal: Principal, entry_id: int, changes: dict) -> LedgerEntry:
    unknown = set(changes) - MANUAL_FIELDS
    if unknown:
        raise ValidationError(f'Unknown ledger fields: {", ".join(sorted(unknown))}')

    entry = get_manual_entry(db, principal=principal, entry_id=entry_id)
    if 'type' in changes:
        entry.type = _entry_type(changes['type'])
    if 'category' in changes:
        entry.category = _required_text(changes['category'], 'Category')
    if 'description' in changes:
        entry.description = _required_text(changes['description'], 'Description')
    if 'amount' in changes:
        entry.amount = _positive_amount(changes['amount'])
    if 'date' in changes:
        entry.date = _manual_day(changes['date'])
    if 'status' in changes:
        entry.status = _manual_status(changes['status'])
    if 'reference' in changes:
        entry.reference = _optional_text(changes['reference'])
    if 'venue_id' in changes:
        entry.venue_id = _owned_venue_id(db, principal=principal, venue_id=changes['venue_id'])
    if 'notes' in changes:
        entry.notes = _optional_text(changes['notes'])
    db.flush()
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='LEDGER_ENTRY_UPDATED',
        metadata={'ledger_entry_id': entry.id, 'fields': sorted(changes)},
    )
    return entry


def delete_ledger_entry(db: Session, *, principal: Principal, entry_id: int) -> None:
    entry = get_manual_entry(db, principal=principal, entry_id=entry_id)
    db.delete(entry)
    db.flush()
    log_audit(db, actor_principal_id=principal.id, action='LEDGER_ENTRY_DELETED', metadata={'ledger_entry_id': entry_id})
    logger.info('Manual ledger entry %s deleted', entry_id, extra={'vendor_id': principal.id})

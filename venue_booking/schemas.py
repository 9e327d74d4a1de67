from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from venue_booking.models import (
    Booking,
    BookingStatus,
    Lead,
    LeadStatus,
    LedgerEntry,
    LedgerEntryStatus,
    LedgerEntryType,
)
from venue_booking.services.availability_service import AvailabilitySummary
from venue_booking.services.booking_service import BookingRequest
from venue_booking.services.ledger_service import BackfillSummary, VendorLedger


class BookingCreate(BaseModel):
    model_config = {
        'populate_by_name': True,
        'json_schema_extra': {
            'example': {
                'venueId': 12,
                'date': '2026-06-10',
                'guests': 150,
                'totalAmount': 45000,
                'paymentId': 'pay_Q1w2e3',
                'name': 'Asha Rao',
                'phone': '9800000000',
                'eventType': 'wedding',
            }
        },
    }

    venue_id: int = Field(alias='venueId')
    date: str | None = None
    date_from: str | None = Field(default=None, alias='dateFrom')
    date_to: str | None = Field(default=None, alias='dateTo')
    guests: int
    total_amount: Decimal | None = Field(default=None, alias='totalAmount')
    payment_id: str | None = Field(default=None, alias='paymentId')
    device_id: str | None = Field(default=None, alias='deviceId')
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    event_type: str | None = Field(default=None, alias='eventType')

    def to_request(self) -> BookingRequest:
        return BookingRequest(**self.model_dump())


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class LeadPromote(BaseModel):
    model_config = {'populate_by_name': True}

    payment_ref: str = Field(alias='paymentRef')


class LeadConvert(BaseModel):
    model_config = {'populate_by_name': True}

    payment_id: str | None = Field(default=None, alias='paymentId')


class BlockedDatesUpdate(BaseModel):
    dates: list[str]


class BookingReject(BaseModel):
    reason: str | None = None


class LeadStatusUpdate(BaseModel):
    status: LeadStatus
    notes: str | None = None


class LedgerEntryCreate(BaseModel):
    model_config = {'populate_by_name': True}

    type: LedgerEntryType
    category: str
    description: str
    amount: Decimal
    date: str | None = None
    status: LedgerEntryStatus | None = None
    reference: str | None = None
    venue_id: int | None = Field(default=None, alias='venueId')
    notes: str | None = None


class LedgerEntryUpdate(BaseModel):
    model_config = {'populate_by_name': True}

    type: LedgerEntryType | None = None
    category: str | None = None
    description: str | None = None
    amount: Decimal | None = None
    date: str | None = None
    status: LedgerEntryStatus | None = None
    reference: str | None = None
    venue_id: int | None = Field(default=None, alias='venueId')
    notes: str | None = None


def _iso(value):
    return value.isoformat() if value is not None else None


def booking_to_dict(booking: Booking) -> dict:
    return {
        'id': booking.id,
        'customerId': booking.customer_id,
        'venueId': booking.venue_id,
        'date': _iso(booking.date),
        'dateFrom': _iso(booking.date_from),
        'dateTo': _iso(booking.date_to),
        'name': booking.name,
        'phone': booking.phone,
        'eventType': booking.event_type,
        'guests': booking.guests,
        'totalAmount': str(booking.total_amount),
        'status': booking.status.value,
        'paymentId': booking.payment_id,
        'paymentStatus': booking.payment_status.value,
        'adminApproved': booking.admin_approved,
        'deviceId': booking.device_id,
        'createdAt': _iso(booking.created_at),
        'updatedAt': _iso(booking.updated_at),
    }


def lead_to_dict(lead: Lead) -> dict:
    return {
        'id': lead.id,
        'customerId': lead.customer_id,
        'deviceId': lead.device_id,
        'venueId': lead.venue_id,
        'bookingId': lead.booking_id,
        'date': _iso(lead.date),
        'dateFrom': _iso(lead.date_from),
        'dateTo': _iso(lead.date_to),
        'name': lead.name,
        'phone': lead.phone,
        'email': lead.email,
        'eventType': lead.event_type,
        'guests': lead.guests,
        'totalAmount': str(lead.total_amount),
        'status': lead.status.value,
        'source': lead.source.value,
        'notes': lead.notes,
        'createdAt': _iso(lead.created_at),
    }


def ledger_entry_to_dict(entry: LedgerEntry) -> dict:
    return {
        'id': entry.id,
        'vendorId': entry.vendor_id,
        'venueId': entry.venue_id,
        'type': entry.type.value,
        'category': entry.category,
        'description': entry.description,
        'amount': str(entry.amount),
        'date': _iso(entry.date),
        'status': entry.status.value,
        'reference': entry.reference,
        'notes': entry.notes,
        'source': entry.source.value,
    }


def vendor_ledger_to_dict(ledger: VendorLedger) -> dict:
    return {
        'entries': [ledger_entry_to_dict(entry) for entry in ledger.entries],
        'totals': {
            'income': str(ledger.total_income),
            'expense': str(ledger.total_expense),
            'net': str(ledger.net),
        },
    }


def availability_to_dict(summary: AvailabilitySummary) -> dict:
    return {
        'venueId': summary.venue_id,
        'blockedDates': [d.isoformat() for d in summary.blocked_dates],
        'bookedDates': [d.isoformat() for d in summary.booked_dates],
        'unavailableDates': [d.isoformat() for d in summary.unavailable_dates],
    }


def backfill_to_dict(summary: BackfillSummary) -> dict:
    return {
        'total': summary.total,
        'created': summary.created,
        'skipped': summary.skipped,
        'errors': summary.errors,
        'errorBookingIds': summary.error_booking_ids,
    }

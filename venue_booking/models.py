from __future__ import annotations

import datetime as dt
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    CUSTOMER = 'customer'
    VENDOR = 'vendor'
    ADMIN = 'admin'


class VenueStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class BookingStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'


OCCUPYING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
TERMINAL_STATUSES = (BookingStatus.CANCELLED, BookingStatus.FAILED)


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'


class LeadStatus(str, Enum):
    NEW = 'new'
    CONTACTED = 'contacted'
    QUALIFIED = 'qualified'
    CONVERTED = 'converted'
    LOST = 'lost'


class LeadSource(str, Enum):
    INQUIRY = 'inquiry'
    BOOKING = 'booking'


class LedgerEntryType(str, Enum):
    INCOME = 'income'
    EXPENSE = 'expense'


class LedgerEntryStatus(str, Enum):
    PAID = 'paid'
    PENDING = 'pending'
    UNPAID = 'unpaid'
    CANCELLED = 'cancelled'


class LedgerEntrySource(str, Enum):
    BOOKING = 'booking'
    MANUAL = 'manual'


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, 'user_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    session_token: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))


class Venue(Base):
    __tablename__ = 'venues'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    vendor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[VenueStatus] = mapped_column(
        _enum(VenueStatus, 'venue_status'), nullable=False, default=VenueStatus.PENDING
    )
    min_guests: Mapped[int | None] = mapped_column(Integer)
    max_guests: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class VenueBlockedDate(Base):
    __tablename__ = 'venue_blocked_dates'
    __table_args__ = (
        UniqueConstraint('venue_id', 'day', name='venue_blocked_dates_venue_day_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    venue_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('venues.id'), nullable=False)
    day: Mapped[dt.date] = mapped_column(Date, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Booking(Base):
    __tablename__ = 'bookings'
    __table_args__ = (
        CheckConstraint('guests > 0', name='bookings_guests_positive_ck'),
        CheckConstraint('total_amount >= 0', name='bookings_total_amount_non_negative_ck'),
        Index('bookings_venue_status_idx', 'venue_id', 'status'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    venue_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('venues.id'), nullable=False)
    date: Mapped[dt.date | None] = mapped_column(Date)
    date_from: Mapped[dt.date | None] = mapped_column(Date)
    date_to: Mapped[dt.date | None] = mapped_column(Date)
    name: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    event_type: Mapped[str] = mapped_column(Text, nullable=False, default='wedding', server_default='wedding')
    guests: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, 'booking_status'), nullable=False, default=BookingStatus.PENDING
    )
    payment_id: Mapped[str | None] = mapped_column(Text)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 'payment_status'), nullable=False, default=PaymentStatus.PENDING
    )
    admin_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    device_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class BookingDay(Base):
    """One row per calendar day held by a pending or confirmed booking."""

    __tablename__ = 'booking_days'
    __table_args__ = (
        UniqueConstraint('venue_id', 'day', name='booking_days_venue_day_uniq'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    booking_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('bookings.id'), nullable=False, index=True)
    venue_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('venues.id'), nullable=False)
    day: Mapped[dt.date] = mapped_column(Date, nullable=False)


class Lead(Base):
    __tablename__ = 'leads'
    __table_args__ = (
        UniqueConstraint('booking_id', name='leads_booking_id_key'),
        Index('leads_venue_status_idx', 'venue_id', 'status'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    customer_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    device_id: Mapped[str | None] = mapped_column(Text)
    venue_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('venues.id'), nullable=False)
    booking_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('bookings.id'))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    date_from: Mapped[dt.date | None] = mapped_column(Date)
    date_to: Mapped[dt.date | None] = mapped_column(Date)
    name: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    event_type: Mapped[str] = mapped_column(Text, nullable=False, default='wedding', server_default='wedding')
    guests: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[LeadStatus] = mapped_column(_enum(LeadStatus, 'lead_status'), nullable=False, default=LeadStatus.NEW)
    source: Mapped[LeadSource] = mapped_column(
        _enum(LeadSource, 'lead_source'), nullable=False, default=LeadSource.INQUIRY
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class LedgerEntry(Base):
    __tablename__ = 'ledger_entries'
    __table_args__ = (
        # Only booking postings are deduplicated; vendors may reuse references on manual entries.
        Index(
            'ledger_entries_booking_reference_uniq',
            'vendor_id',
            'venue_id',
            'reference',
            unique=True,
            postgresql_where=text("source = 'booking'"),
            sqlite_where=text("source = 'booking'"),
        ),
        CheckConstraint('amount >= 0', name='ledger_entries_amount_non_negative_ck'),
        Index('ledger_entries_vendor_date_idx', 'vendor_id', 'date'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    vendor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    type: Mapped[LedgerEntryType] = mapped_column(_enum(LedgerEntryType, 'ledger_entry_type'), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    status: Mapped[LedgerEntryStatus] = mapped_column(
        _enum(LedgerEntryStatus, 'ledger_entry_status'), nullable=False, default=LedgerEntryStatus.PAID
    )
    reference: Mapped[str | None] = mapped_column(Text)
    venue_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('venues.id'))
    source: Mapped[LedgerEntrySource] = mapped_column(
        _enum(LedgerEntrySource, 'ledger_entry_source'), nullable=False, default=LedgerEntrySource.BOOKING
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    booking_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('bookings.id'))
    lead_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('leads.id'))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

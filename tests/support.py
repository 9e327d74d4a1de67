from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from venue_booking.auth import Principal, Role
from venue_booking.models import Base, User, UserRole, Venue, VenueBlockedDate, VenueStatus
from venue_booking.services import dates as day_utils


def make_engine():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)

    # pysqlite needs its own transaction handling turned off for SAVEPOINT to work.
    @event.listens_for(engine, 'connect')
    def _do_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _do_begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(engine)
    return engine


def make_session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def days_from_today(offset: int) -> date:
    return day_utils.today() + timedelta(days=offset)


def add_user(db: Session, *, username: str, role: UserRole, active: bool = True) -> User:
    user = User(username=username, name=username.title(), role=role, active=active)
    db.add(user)
    db.flush()
    return user


def principal_for(user: User) -> Principal:
    return Principal(id=user.id, username=user.username, role=Role(user.role.value), active=user.active)


def add_venue(
    db: Session,
    *,
    vendor: User,
    name: str = 'Lakeside Hall',
    status: VenueStatus = VenueStatus.APPROVED,
    min_guests: int | None = None,
    max_guests: int | None = None,
    blocked: list[date] | None = None,
) -> Venue:
    venue = Venue(vendor_id=vendor.id, name=name, status=status, min_guests=min_guests, max_guests=max_guests)
    db.add(venue)
    db.flush()
    for day in blocked or []:
        db.add(VenueBlockedDate(venue_id=venue.id, day=day))
    db.flush()
    return venue


class MarketplaceFixture:
    """One vendor with an approved venue, one customer and one admin."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self.vendor_user = add_user(db, username='vendor', role=UserRole.VENDOR)
        self.other_vendor_user = add_user(db, username='othervendor', role=UserRole.VENDOR)
        self.customer_user = add_user(db, username='customer', role=UserRole.CUSTOMER)
        self.other_customer_user = add_user(db, username='othercustomer', role=UserRole.CUSTOMER)
        self.admin_user = add_user(db, username='admin', role=UserRole.ADMIN)
        self.venue = add_venue(db, vendor=self.vendor_user)
        db.commit()

        self.vendor = principal_for(self.vendor_user)
        self.other_vendor = principal_for(self.other_vendor_user)
        self.customer = principal_for(self.customer_user)
        self.other_customer = principal_for(self.other_customer_user)
        self.admin = principal_for(self.admin_user)


AMOUNT = Decimal('45000.00')

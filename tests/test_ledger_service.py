from __future__ import annotations

import unittest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import select

from support import AMOUNT, MarketplaceFixture, add_venue, days_from_today, make_engine, make_session_factory
from venue_booking.models import (
    Booking,
    BookingStatus,
    LedgerEntry,
    LedgerEntrySource,
    LedgerEntryStatus,
    LedgerEntryType,
    PaymentStatus,
)
from venue_booking.services.errors import AccessDeniedError, NotFoundError, ValidationError
from venue_booking.services.ledger_service import (
    add_ledger_entry,
    backfill_income,
    booking_reference,
    delete_ledger_entry,
    post_income,
    update_ledger_entry,
    upsert_income_entry,
    vendor_ledger,
)
from venue_booking.services.venue_service import get_venue


class BookingReferenceTests(unittest.TestCase):
    def test_reference_uses_last_six_digits(self) -> None:
        self.assertEqual(booking_reference(42), 'Booking #000042')
        self.assertEqual(booking_reference(1234567), 'Booking #234567')


class LedgerServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.db = make_session_factory(self.engine)()
        self.world = MarketplaceFixture(self.db)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _booking(self, *, approved: bool = True, payment: PaymentStatus = PaymentStatus.PAID, amount=AMOUNT, offset=10):
        booking = Booking(
            venue_id=self.world.venue.id,
            date=days_from_today(offset),
            name='Asha Rao',
            guests=150,
            total_amount=amount,
            status=BookingStatus.CONFIRMED if approved else BookingStatus.PENDING,
            payment_status=payment,
            admin_approved=approved,
        )
        self.db.add(booking)
        self.db.flush()
        return booking

    def _entries(self) -> list[LedgerEntry]:
        return self.db.execute(select(LedgerEntry).order_by(LedgerEntry.id)).scalars().all()

    def test_post_income_builds_entry_from_booking(self) -> None:
        booking = self._booking()
        entry, created = post_income(self.db, booking=booking, venue=get_venue(self.db, self.world.venue.id))

        self.assertTrue(created)
        self.assertEqual(entry.type, LedgerEntryType.INCOME)
        self.assertEqual(entry.category, 'Booking Payment')
        self.assertEqual(entry.description, 'Booking for Lakeside Hall')
        self.assertEqual(entry.amount, AMOUNT)
        self.assertEqual(entry.date, booking.date)
        self.assertEqual(entry.status, LedgerEntryStatus.PAID)
        self.assertEqual(entry.vendor_id, self.world.vendor.id)
        self.assertEqual(entry.notes, 'Booking confirmed for Asha Rao - 150 guests')

    def test_unpaid_booking_posts_pending_entry(self) -> None:
        booking = self._booking(payment=PaymentStatus.PENDING)
        entry, _ = post_income(self.db, booking=booking, venue=get_venue(self.db, self.world.venue.id))
        self.assertEqual(entry.status, LedgerEntryStatus.PENDING)

    def test_second_post_is_a_no_op(self) -> None:
        booking = self._booking()
        venue = get_venue(self.db, self.world.venue.id)
        first, created_first = post_income(self.db, booking=booking, venue=venue)
        second, created_second = post_income(self.db, booking=booking, venue=venue)

        self.assertTrue(created_first)
        self.assertFalse(created_second)
        self.assertEqual(first.id, second.id)
        self.assertEqual(len(self._entries()), 1)

    def test_upsert_is_idempotent_by_key(self) -> None:
        common = dict(
            vendor_id=self.world.vendor.id,
            reference='Booking #000001',
            description='Booking',
            amount=Decimal('10.00'),
            entry_date=days_from_today(1),
            status=LedgerEntryStatus.PAID,
        )
        venue = get_venue(self.db, self.world.venue.id)
        _, created = upsert_income_entry(self.db, venue_id=venue.id, **common)
        _, again = upsert_income_entry(self.db, venue_id=venue.id, **common)
        self.assertTrue(created)
        self.assertFalse(again)

    def test_backfill_creates_missing_entries_only(self) -> None:
        venue = get_venue(self.db, self.world.venue.id)
        already = self._booking(offset=10)
        post_income(self.db, booking=already, venue=venue)
        missing = self._booking(offset=11)
        self._booking(offset=12, approved=False)
        self._booking(offset=13, payment=PaymentStatus.PENDING)
        self._booking(offset=14, amount=0)
        self.db.commit()

        summary = backfill_income(self.db)
        self.db.commit()

        self.assertEqual((summary.total, summary.created, summary.skipped, summary.errors), (2, 1, 1, 0))
        references = [entry.reference for entry in self._entries()]
        self.assertIn(booking_reference(missing.id), references)

        rerun = backfill_income(self.db)
        self.assertEqual((rerun.created, rerun.skipped), (0, 2))

    def test_backfill_counts_errors_and_keeps_going(self) -> None:
        first = self._booking(offset=10)
        self._booking(offset=11)
        self.db.commit()

        real_post = post_income

        def flaky(db, *, booking, venue, note_verb='confirmed'):
            if booking.id == first.id:
                raise RuntimeError('boom')
            return real_post(db, booking=booking, venue=venue, note_verb=note_verb)

        with patch('venue_booking.services.ledger_service.post_income', side_effect=flaky):
            with self.assertLogs('venue_booking.services.ledger_service', level='ERROR'):
                summary = backfill_income(self.db)

        self.assertEqual((summary.created, summary.errors), (1, 1))
        self.assertEqual(summary.error_booking_ids, [first.id])

    def test_backfill_note_says_approved(self) -> None:
        self._booking()
        self.db.commit()
        backfill_income(self.db)
        self.assertEqual(self._entries()[0].notes, 'Booking approved for Asha Rao - 150 guests')

    def test_vendor_ledger_totals(self) -> None:
        venue = get_venue(self.db, self.world.venue.id)
        post_income(self.db, booking=self._booking(offset=10), venue=venue)
        post_income(self.db, booking=self._booking(offset=11, amount=Decimal('5000.00')), venue=venue)
        self.db.add(
            LedgerEntry(
                vendor_id=self.world.vendor.id,
                type=LedgerEntryType.EXPENSE,
                category='Maintenance',
                description='Generator repair',
                amount=Decimal('2000.00'),
                date=days_from_today(1),
                status=LedgerEntryStatus.PAID,
            )
        )
        self.db.commit()

        ledger = vendor_ledger(self.db, vendor_id=self.world.vendor.id)
        self.assertEqual(len(ledger.entries), 3)
        self.assertEqual(ledger.total_income, Decimal('50000.00'))
        self.assertEqual(ledger.total_expense, Decimal('2000.00'))
        self.assertEqual(ledger.net, Decimal('48000.00'))

        income_only = vendor_ledger(self.db, vendor_id=self.world.vendor.id, entry_type=LedgerEntryType.INCOME)
        self.assertEqual(len(income_only.entries), 2)
        self.assertEqual(vendor_ledger(self.db, vendor_id=self.world.other_vendor.id).entries, [])

    def _manual(self, **overrides) -> LedgerEntry:
        values = dict(
            principal=self.world.vendor,
            entry_type='expense',
            category='Maintenance',
            description='Generator repair',
            amount='2000',
        )
        values.update(overrides)
        return add_ledger_entry(self.db, **values)

    def test_manual_entry_defaults(self) -> None:
        entry = self._manual(category='  Maintenance ', reference='  ')
        self.db.commit()

        self.assertEqual(entry.source, LedgerEntrySource.MANUAL)
        self.assertEqual(entry.type, LedgerEntryType.EXPENSE)
        self.assertEqual(entry.category, 'Maintenance')
        self.assertEqual(entry.amount, Decimal('2000.00'))
        self.assertEqual(entry.date, days_from_today(0))
        self.assertEqual(entry.status, LedgerEntryStatus.PAID)
        self.assertIsNone(entry.reference)
        self.assertIsNone(entry.venue_id)

    def test_manual_entry_validation(self) -> None:
        for overrides in (
            {'entry_type': 'refund'},
            {'category': ' '},
            {'description': None},
            {'amount': 0},
            {'amount': '-5'},
            {'amount': 'lots'},
            {'entry_date': '31/12/2026'},
            {'status': 'settled'},
        ):
            with self.subTest(overrides=overrides), self.assertRaises(ValidationError):
                self._manual(**overrides)

    def test_manual_entry_venue_must_belong_to_vendor(self) -> None:
        other_venue = add_venue(self.db, vendor=self.world.other_vendor_user, name='Rooftop')
        with self.assertRaises(AccessDeniedError):
            self._manual(venue_id=other_venue.id)
        with self.assertRaises(NotFoundError):
            self._manual(venue_id=999)
        with self.assertRaises(AccessDeniedError):
            self._manual(principal=self.world.customer)
        entry = self._manual(venue_id=self.world.venue.id)
        self.assertEqual(entry.venue_id, self.world.venue.id)

    def test_manual_reference_does_not_block_booking_income(self) -> None:
        booking = self._booking()
        manual = self._manual(
            entry_type='income',
            category='Deposit',
            description='Advance paid in cash',
            reference=booking_reference(booking.id),
            venue_id=self.world.venue.id,
        )
        self.db.commit()

        entry, created = post_income(self.db, booking=booking, venue=get_venue(self.db, self.world.venue.id))
        self.db.commit()

        self.assertTrue(created)
        self.assertNotEqual(entry.id, manual.id)
        self.assertEqual(entry.source, LedgerEntrySource.BOOKING)
        self.assertEqual(entry.amount, AMOUNT)
        self.assertEqual(len(self._entries()), 2)

        # A second manual line with the same reference is allowed too.
        self._manual(reference=booking_reference(booking.id), venue_id=self.world.venue.id)
        self.db.commit()
        _, again = post_income(self.db, booking=booking, venue=get_venue(self.db, self.world.venue.id))
        self.assertFalse(again)
        self.assertEqual(len(self._entries()), 3)

    def test_update_and_delete_manual_entry(self) -> None:
        entry = self._manual()
        self.db.commit()

        updated = update_ledger_entry(
            self.db,
            principal=self.world.vendor,
            entry_id=entry.id,
            changes={'amount': Decimal('2500'), 'status': 'pending', 'notes': ' Invoice 17 ', 'venue_id': None},
        )
        self.db.commit()
        self.assertEqual(updated.amount, Decimal('2500.00'))
        self.assertEqual(updated.status, LedgerEntryStatus.PENDING)
        self.assertEqual(updated.notes, 'Invoice 17')
        self.assertEqual(updated.description, 'Generator repair')

        with self.assertRaises(ValidationError):
            update_ledger_entry(self.db, principal=self.world.vendor, entry_id=entry.id, changes={'vendor_id': 5})
        with self.assertRaises(ValidationError):
            update_ledger_entry(self.db, principal=self.world.vendor, entry_id=entry.id, changes={'amount': 0})
        with self.assertRaises(AccessDeniedError):
            update_ledger_entry(self.db, principal=self.world.other_vendor, entry_id=entry.id, changes={})
        with self.assertRaises(AccessDeniedError):
            delete_ledger_entry(self.db, principal=self.world.other_vendor, entry_id=entry.id)
        self.db.rollback()

        delete_ledger_entry(self.db, principal=self.world.vendor, entry_id=entry.id)
        self.db.commit()
        self.assertEqual(self._entries(), [])
        with self.assertRaises(NotFoundError):
            delete_ledger_entry(self.db, principal=self.world.vendor, entry_id=entry.id)

    def test_booking_income_entries_are_not_editable(self) -> None:
        entry, _ = post_income(self.db, booking=self._booking(), venue=get_venue(self.db, self.world.venue.id))
        self.db.commit()
        with self.assertRaises(ValidationError):
            update_ledger_entry(self.db, principal=self.world.vendor, entry_id=entry.id, changes={'amount': '1'})
        with self.assertRaises(ValidationError):
            delete_ledger_entry(self.db, principal=self.world.vendor, entry_id=entry.id)


if __name__ == '__main__':
    unittest.main()

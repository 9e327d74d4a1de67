from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from support import MarketplaceFixture, days_from_today, make_engine, make_session_factory
from venue_booking.config import settings
from venue_booking.db import get_db
from venue_booking.dependencies import PAYMENT_SECRET_HEADER
from venue_booking.main import app
from venue_booking.security.sessions import create_web_session


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_engine()
        self.Session = make_session_factory(self.engine)
        self.db = self.Session()
        self.world = MarketplaceFixture(self.db)
        self.tokens = {}
        for key, user in (
            ('customer', self.world.customer_user),
            ('other_customer', self.world.other_customer_user),
            ('vendor', self.world.vendor_user),
            ('admin', self.world.admin_user),
        ):
            self.tokens[key] = create_web_session(self.db, user.id)
        self.db.commit()

        def _override_db():
            with self.Session() as db:
                yield db

        app.dependency_overrides[get_db] = _override_db
        self.session_patch = patch('venue_booking.security.sessions.SessionLocal', self.Session)
        self.session_patch.start()
        self.secret_patch = patch.object(settings, 'payment_callback_secret', 'relay-secret')
        self.secret_patch.start()
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.secret_patch.stop()
        self.session_patch.stop()
        app.dependency_overrides.clear()
        self.db.close()
        self.engine.dispose()

    def auth(self, who: str) -> dict:
        return {'Authorization': f'Bearer {self.tokens[who]}'}

    def relay(self, who: str | None = None) -> dict:
        headers = {PAYMENT_SECRET_HEADER: 'relay-secret'}
        if who:
            headers.update(self.auth(who))
        return headers

    def booking_body(self, **overrides) -> dict:
        body = {
            'venueId': self.world.venue.id,
            'date': days_from_today(10).isoformat(),
            'guests': 150,
            'totalAmount': 45000,
            'name': 'Asha Rao',
            'phone': '9800000000',
        }
        body.update(overrides)
        return body

    def test_inquiry_without_payment_returns_lead(self) -> None:
        response = self.client.post('/bookings', json=self.booking_body())
        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload['type'], 'lead')
        self.assertEqual(payload['lead']['status'], 'new')
        self.assertEqual(payload['lead']['source'], 'inquiry')

    def test_double_booking_is_a_conflict(self) -> None:
        first = self.client.post('/bookings', json=self.booking_body(paymentId='pay_1'), headers=self.auth('customer'))
        self.assertEqual(first.status_code, 201)
        booking_id = first.json()['booking']['id']

        second = self.client.post(
            '/bookings',
            json=self.booking_body(paymentId='pay_2'),
            headers=self.auth('other_customer'),
        )
        self.assertEqual(second.status_code, 409)
        detail = second.json()['detail']
        self.assertEqual(detail['kind'], 'DATE_CONFLICT')
        self.assertEqual(detail['bookingId'], booking_id)
        self.assertEqual(detail['dates'], [days_from_today(10).isoformat()])

    def test_past_date_is_rejected(self) -> None:
        response = self.client.post('/bookings', json=self.booking_body(date=days_from_today(-1).isoformat()))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['detail']['kind'], 'DATE_IN_PAST')

    def test_availability_lists_booked_days(self) -> None:
        self.client.post('/bookings', json=self.booking_body(paymentId='pay_1'), headers=self.auth('customer'))
        response = self.client.get(f'/venues/{self.world.venue.id}/availability')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['bookedDates'], [days_from_today(10).isoformat()])

        missing = self.client.get('/venues/999/availability')
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()['detail']['kind'], 'NOT_FOUND')

    def test_approval_flow(self) -> None:
        created = self.client.post('/bookings', json=self.booking_body(paymentId='pay_1'), headers=self.relay('customer'))
        booking_id = created.json()['booking']['id']

        self.assertEqual(self.client.patch(f'/bookings/{booking_id}/status', json={'status': 'confirmed'}).status_code, 401)

        denied = self.client.patch(
            f'/bookings/{booking_id}/status',
            json={'status': 'confirmed'},
            headers=self.auth('vendor'),
        )
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()['detail']['kind'], 'ACCESS_DENIED')
        self.assertEqual(self.client.get('/bookings', headers=self.auth('vendor')).json()['bookings'], [])

        self.assertEqual(
            self.client.post(f'/admin/bookings/{booking_id}/approve', headers=self.auth('customer')).status_code,
            403,
        )
        approved = self.client.post(f'/admin/bookings/{booking_id}/approve', headers=self.auth('admin'))
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()['booking']['paymentStatus'], 'paid')
        self.assertTrue(approved.json()['booking']['adminApproved'])

        confirmed = self.client.patch(
            f'/bookings/{booking_id}/status',
            json={'status': 'confirmed'},
            headers=self.auth('vendor'),
        )
        self.assertEqual(confirmed.status_code, 200)
        self.assertEqual(confirmed.json()['booking']['status'], 'confirmed')

        ledger = self.client.get('/vendor/ledger', headers=self.auth('vendor')).json()
        self.assertEqual(len(ledger['entries']), 1)
        self.assertEqual(ledger['totals']['income'], '45000.00')

        backfill = self.client.post('/admin/ledger/backfill', headers=self.auth('admin')).json()
        self.assertEqual((backfill['created'], backfill['skipped']), (0, 1))

    def test_reject_marks_lead_lost(self) -> None:
        created = self.client.post('/bookings', json=self.booking_body(paymentId='pay_1'), headers=self.auth('customer'))
        booking_id = created.json()['booking']['id']

        rejected = self.client.post(
            f'/admin/bookings/{booking_id}/reject',
            json={'reason': 'Double entry'},
            headers=self.auth('admin'),
        )
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.json()['booking']['status'], 'cancelled')

        leads = self.client.get('/admin/leads', params={'status': 'lost'}, headers=self.auth('admin')).json()['leads']
        self.assertEqual(len(leads), 1)
        self.assertEqual(leads[0]['notes'], 'Rejected: Double entry')

    def test_lead_promotion_and_replay(self) -> None:
        lead = self.client.post('/bookings', json=self.booking_body(), headers=self.auth('customer')).json()['lead']

        promote_url = f"/leads/{lead['id']}/promote"
        first = self.client.post(promote_url, json={'paymentRef': 'pay_1'}, headers=self.relay())
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()['booking']['paymentStatus'], 'paid')
        replay = self.client.post(promote_url, json={'paymentRef': 'pay_1'}, headers=self.relay())
        self.assertEqual(replay.json()['booking']['id'], first.json()['booking']['id'])

        other = self.client.post(promote_url, json={'paymentRef': 'pay_2'}, headers=self.auth('admin'))
        self.assertEqual(other.status_code, 409)
        self.assertEqual(other.json()['detail']['kind'], 'ALREADY_PROMOTED')

        listing = self.client.get('/bookings', headers=self.auth('customer')).json()
        self.assertEqual(len(listing['bookings']), 1)
        self.assertEqual(listing['leads'], [])

    def test_vendor_blocked_dates_and_direct_booking(self) -> None:
        day = days_from_today(6).isoformat()
        blocked = self.client.post(
            f'/vendor/venues/{self.world.venue.id}/blocked-dates',
            json={'dates': [day]},
            headers=self.auth('vendor'),
        )
        self.assertEqual(blocked.status_code, 200)
        self.assertEqual(blocked.json()['blockedDates'], [day])

        refused = self.client.post(
            '/vendor/bookings',
            json=self.booking_body(date=day),
            headers=self.auth('vendor'),
        )
        self.assertEqual(refused.status_code, 409)
        self.assertEqual(refused.json()['detail']['kind'], 'DATE_BLOCKED')

        unblocked = self.client.request(
            'DELETE',
            f'/vendor/venues/{self.world.venue.id}/blocked-dates',
            json={'dates': [day]},
            headers=self.auth('vendor'),
        )
        self.assertEqual(unblocked.json()['blockedDates'], [])

        direct = self.client.post('/vendor/bookings', json=self.booking_body(date=day), headers=self.auth('vendor'))
        self.assertEqual(direct.status_code, 201)
        self.assertEqual(direct.json()['booking']['status'], 'confirmed')
        self.assertTrue(direct.json()['booking']['adminApproved'])

    def test_promotion_needs_payment_authority(self) -> None:
        lead = self.client.post('/bookings', json=self.booking_body(), headers=self.auth('customer')).json()['lead']
        promote_url = f"/leads/{lead['id']}/promote"

        anonymous = self.client.post(promote_url, json={'paymentRef': 'made-up'})
        self.assertEqual(anonymous.status_code, 401)
        forged = self.client.post(
            promote_url,
            json={'paymentRef': 'made-up'},
            headers={PAYMENT_SECRET_HEADER: 'guess'},
        )
        self.assertEqual(forged.status_code, 401)
        customer = self.client.post(promote_url, json={'paymentRef': 'made-up'}, headers=self.auth('customer'))
        self.assertEqual(customer.status_code, 403)
        self.assertEqual(self.client.get('/bookings', headers=self.auth('admin')).json()['bookings'], [])

        admin = self.client.post(promote_url, json={'paymentRef': 'pay_1'}, headers=self.auth('admin'))
        self.assertEqual(admin.status_code, 200)
        self.assertEqual(admin.json()['booking']['paymentStatus'], 'paid')

    def test_promotion_is_closed_without_a_configured_secret(self) -> None:
        lead = self.client.post('/bookings', json=self.booking_body(), headers=self.auth('customer')).json()['lead']
        with patch.object(settings, 'payment_callback_secret', ''):
            response = self.client.post(
                f"/leads/{lead['id']}/promote",
                json={'paymentRef': 'pay_1'},
                headers={PAYMENT_SECRET_HEADER: ''},
            )
        self.assertEqual(response.status_code, 401)

    def test_client_payment_id_is_not_trusted(self) -> None:
        unverified = self.client.post(
            '/bookings',
            json=self.booking_body(paymentId='made-up'),
            headers=self.auth('customer'),
        )
        self.assertEqual(unverified.status_code, 201)
        booking = unverified.json()['booking']
        self.assertEqual(booking['paymentId'], 'made-up')
        self.assertEqual(booking['paymentStatus'], 'pending')

        verified = self.client.post(
            '/bookings',
            json=self.booking_body(date=days_from_today(11).isoformat(), paymentId='pay_2'),
            headers=self.relay('customer'),
        )
        self.assertEqual(verified.json()['booking']['paymentStatus'], 'paid')

    def test_out_of_range_dates_are_validation_errors(self) -> None:
        for body in (
            self.booking_body(date='9999-12-31', paymentId='pay_1'),
            self.booking_body(
                date=None,
                dateFrom=days_from_today(1).isoformat(),
                dateTo=days_from_today(400).isoformat(),
            ),
        ):
            with self.subTest(body=body):
                response = self.client.post('/bookings', json=body, headers=self.auth('customer'))
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['detail']['kind'], 'VALIDATION_ERROR')

    def test_booking_list_date_filter_sees_ranges(self) -> None:
        ranged = self.client.post(
            '/bookings',
            json=self.booking_body(
                date=None,
                dateFrom=days_from_today(10).isoformat(),
                dateTo=days_from_today(13).isoformat(),
                paymentId='pay_1',
            ),
            headers=self.auth('customer'),
        ).json()['booking']

        listing = self.client.get(
            '/bookings',
            params={'dateFrom': days_from_today(12).isoformat()},
            headers=self.auth('admin'),
        ).json()
        self.assertEqual([row['id'] for row in listing['bookings']], [ranged['id']])

    def test_admin_converts_lead_without_payment(self) -> None:
        lead = self.client.post('/bookings', json=self.booking_body(), headers=self.auth('customer')).json()['lead']
        convert_url = f"/admin/leads/{lead['id']}/convert"

        self.assertEqual(self.client.post(convert_url, headers=self.auth('customer')).status_code, 403)

        converted = self.client.post(convert_url, headers=self.auth('admin'))
        self.assertEqual(converted.status_code, 200)
        payload = converted.json()
        self.assertEqual(payload['message'], 'Lead converted to booking. Payment pending.')
        self.assertEqual(payload['booking']['paymentStatus'], 'pending')
        self.assertIsNone(payload['booking']['paymentId'])

        again = self.client.post(convert_url, json={'paymentId': 'pay_1'}, headers=self.auth('admin'))
        self.assertEqual(again.status_code, 409)

        second = self.client.post(
            '/bookings',
            json=self.booking_body(date=days_from_today(12).isoformat()),
            headers=self.auth('customer'),
        ).json()['lead']
        paid = self.client.post(
            f"/admin/leads/{second['id']}/convert",
            json={'paymentId': 'pay_2'},
            headers=self.auth('admin'),
        )
        self.assertEqual(paid.json()['booking']['paymentStatus'], 'paid')

    def test_vendor_manual_ledger_entries(self) -> None:
        created = self.client.post(
            '/vendor/ledger',
            json={
                'type': 'expense',
                'category': 'Maintenance',
                'description': 'Generator repair',
                'amount': 2000,
                'venueId': self.world.venue.id,
            },
            headers=self.auth('vendor'),
        )
        self.assertEqual(created.status_code, 201)
        entry = created.json()['entry']
        self.assertEqual(entry['source'], 'manual')
        self.assertEqual(entry['status'], 'paid')
        self.assertEqual(entry['amount'], '2000.00')

        invalid = self.client.post(
            '/vendor/ledger',
            json={'type': 'expense', 'category': 'Rent', 'description': 'Hall rent', 'amount': 0},
            headers=self.auth('vendor'),
        )
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.json()['detail']['kind'], 'VALIDATION_ERROR')

        customer = self.client.post(
            '/vendor/ledger',
            json={'type': 'expense', 'category': 'Rent', 'description': 'Hall rent', 'amount': 10},
            headers=self.auth('customer'),
        )
        self.assertEqual(customer.status_code, 403)

        updated = self.client.patch(
            f"/vendor/ledger/{entry['id']}",
            json={'amount': 2500, 'notes': 'Invoice 17'},
            headers=self.auth('vendor'),
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()['entry']['amount'], '2500.00')
        self.assertEqual(updated.json()['entry']['category'], 'Maintenance')

        ledger = self.client.get('/vendor/ledger', headers=self.auth('vendor')).json()
        self.assertEqual(ledger['totals']['expense'], '2500.00')

        deleted = self.client.delete(f"/vendor/ledger/{entry['id']}", headers=self.auth('vendor'))
        self.assertEqual(deleted.status_code, 200)
        missing = self.client.delete(f"/vendor/ledger/{entry['id']}", headers=self.auth('vendor'))
        self.assertEqual(missing.status_code, 404)

    def test_customer_cannot_use_vendor_routes(self) -> None:
        response = self.client.get('/vendor/ledger', headers=self.auth('customer'))
        self.assertEqual(response.status_code, 403)


if __name__ == '__main__':
    unittest.main()

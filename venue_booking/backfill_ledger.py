from __future__ import annotations

import argparse

from venue_booking.db import SessionLocal
from venue_booking.logging_config import setup_logging
from venue_booking.services.ledger_service import BackfillSummary, backfill_income


def run_backfill(*, dry_run: bool = False) -> BackfillSummary:
    with SessionLocal() as db:
        summary = backfill_income(db)
        if dry_run:
            db.rollback()
        else:
            db.commit()
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description='Create missing ledger income entries for approved, paid bookings.')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Report what would be created without writing anything.',
    )
    parser.add_argument('--json-logs', action='store_true', help='Emit JSON log lines.')
    args = parser.parse_args()

    setup_logging(json_format=args.json_logs or None)
    summary = run_backfill(dry_run=args.dry_run)
    print(
        f'Ledger backfill complete: total={summary.total}, created={summary.created}, '
        f'skipped={summary.skipped}, errors={summary.errors}'
    )
    if summary.error_booking_ids:
        print('Failed bookings: ' + ', '.join(str(booking_id) for booking_id in summary.error_booking_ids))


if __name__ == '__main__':
    main()

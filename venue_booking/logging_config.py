"""
Logging setup for the booking API and its scripts.

Call ``setup_logging()`` once at startup; modules log through
``logging.getLogger(__name__)``. Extra context passed via ``extra=`` is
carried into JSON output for the known keys.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from venue_booking.config import settings

CONTEXT_FIELDS = ('booking_id', 'lead_id', 'venue_id', 'vendor_id', 'principal_id', 'reference')


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(json_format: bool | None = None, level: str | int | None = None) -> None:
    if json_format is None:
        json_format = settings.log_json
    if level is None:
        level = settings.log_level.upper()

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)s | %(name)s | %(message)s'))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

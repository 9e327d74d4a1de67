from __future__ import annotations

from datetime import date
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    DATE_IN_PAST = 'DATE_IN_PAST'
    DATE_BLOCKED = 'DATE_BLOCKED'
    DATE_CONFLICT = 'DATE_CONFLICT'
    VENUE_NOT_AVAILABLE = 'VENUE_NOT_AVAILABLE'
    NOT_FOUND = 'NOT_FOUND'
    ALREADY_PROMOTED = 'ALREADY_PROMOTED'
    ACCESS_DENIED = 'ACCESS_DENIED'
    STORAGE_UNAVAILABLE = 'STORAGE_UNAVAILABLE'


class BookingError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(
        self,
        reason: str,
        *,
        dates: list[date] | None = None,
        booking_id: int | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.dates = sorted(dates or [])
        self.booking_id = booking_id

    def to_dict(self) -> dict:
        payload: dict = {'kind': self.kind.value, 'reason': self.reason}
        if self.dates:
            payload['dates'] = [d.isoformat() for d in self.dates]
        if self.booking_id is not None:
            payload['bookingId'] = self.booking_id
        return payload


class ValidationError(BookingError, ValueError):
    kind = ErrorKind.VALIDATION_ERROR


class DateInPastError(BookingError, ValueError):
    kind = ErrorKind.DATE_IN_PAST


class DateBlockedError(BookingError):
    kind = ErrorKind.DATE_BLOCKED


class DateConflictError(BookingError):
    kind = ErrorKind.DATE_CONFLICT


class VenueNotAvailableError(BookingError):
    kind = ErrorKind.VENUE_NOT_AVAILABLE


class NotFoundError(BookingError, LookupError):
    kind = ErrorKind.NOT_FOUND


class AlreadyPromotedError(BookingError):
    kind = ErrorKind.ALREADY_PROMOTED


class AccessDeniedError(BookingError):
    kind = ErrorKind.ACCESS_DENIED


class StorageUnavailableError(BookingError):
    kind = ErrorKind.STORAGE_UNAVAILABLE


ERROR_CLASSES: dict[ErrorKind, type[BookingError]] = {
    cls.kind: cls
    for cls in (
        ValidationError,
        DateInPastError,
        DateBlockedError,
        DateConflictError,
        VenueNotAvailableError,
        NotFoundError,
        AlreadyPromotedError,
        AccessDeniedError,
        StorageUnavailableError,
    )
}

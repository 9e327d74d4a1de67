import secrets

from fastapi import Depends, HTTPException, Request, status

from venue_booking.auth import Principal, Role, get_optional_principal
from venue_booking.config import settings
from venue_booking.services.errors import BookingError, ErrorKind

PAYMENT_SECRET_HEADER = 'x-payment-callback-secret'

HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.DATE_IN_PAST: 400,
    ErrorKind.VENUE_NOT_AVAILABLE: 400,
    ErrorKind.ACCESS_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DATE_BLOCKED: 409,
    ErrorKind.DATE_CONFLICT: 409,
    ErrorKind.ALREADY_PROMOTED: 409,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}


def http_error(exc: BookingError) -> HTTPException:
    return HTTPException(status_code=HTTP_STATUS_BY_KIND.get(exc.kind, 400), detail=exc.to_dict())


def get_device_id(request: Request) -> str | None:
    device_id = request.headers.get('x-device-id') or request.query_params.get('deviceId')
    if device_id:
        device_id = device_id.strip()
    return device_id or None


def has_payment_authority(request: Request, principal: Principal | None) -> bool:
    """Admins, or the payment relay presenting the shared secret, may settle payments."""
    if principal is not None and principal.role == Role.ADMIN:
        return True
    expected = settings.payment_callback_secret
    supplied = request.headers.get(PAYMENT_SECRET_HEADER, '')
    if not expected or not supplied:
        return False
    return secrets.compare_digest(supplied.encode('utf-8'), expected.encode('utf-8'))


def require_payment_authority(
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal | None:
    if has_payment_authority(request, principal):
        return principal
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)

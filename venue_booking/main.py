from fastapi import FastAPI

from venue_booking.logging_config import setup_logging
from venue_booking.routers import admin, bookings, leads, vendor, venues
from venue_booking.security.sessions import install_auth_session_middleware

setup_logging()

app = FastAPI(title='Venue Booking')

install_auth_session_middleware(app)

app.include_router(bookings.router)
app.include_router(leads.router)
app.include_router(venues.router)
app.include_router(vendor.router)
app.include_router(admin.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}

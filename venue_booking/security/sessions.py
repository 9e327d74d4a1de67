from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from sqlalchemy import select

from venue_booking.auth import Principal, Role
from venue_booking.config import settings
from venue_booking.db import SessionLocal
from venue_booking.models import User, WebSession


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive timestamps.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_web_session(db, user_id: int) -> str:
    token = secrets.token_urlsafe(48)
    db.add(WebSession(session_token=token, user_id=user_id, expires_at=_session_expiry()))
    db.flush()
    return token


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, User).join(User, User.id == WebSession.user_id).where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = _now()
    if web_session.revoked_at is not None or _as_aware(web_session.expires_at) <= now:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    role = Role(user.role.value if hasattr(user.role, 'value') else user.role)
    return Principal(id=user.id, username=user.username, role=role, active=user.active)


def token_from_request(request: Request) -> str | None:
    authorization = request.headers.get('authorization', '')
    scheme, _, credentials = authorization.partition(' ')
    if scheme.lower() == 'bearer' and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.session_cookie_name)


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = token_from_request(request)
        request.state.principal = None
        if token:
            with SessionLocal() as db:
                request.state.principal = load_principal_from_token(db, token)
                db.commit()
        return await call_next(request)

"""
auth/sessions.py -- Server-side sessions bound to a signed cookie.

The browser only ever holds an opaque session id. The cookie value is that id
signed with itsdangerous.TimestampSigner (keyed by SECRET_KEY), so a forged
or tampered cookie is treated as "no session" before any store lookup.

Session data (account_id, csrf_initialized) lives in the `sessions` table as
JSON. Expiry is rolling: every response for a live session pushes
expires_at forward by SESSION_MAX_AGE_SECONDS. Expired rows are ignored on
load and purged by the background task in api/main.py.

Security:
  The session cookie is HttpOnly. Secure and SameSite follow the
  SECURE_COOKIES setting (see Settings.cookie_samesite).

  A session that was never written to (anonymous visitor, no CSRF token
  issued yet) is never persisted and sets no cookie.

  Login rotates the id (Session.rotate), so a sid planted before login never
  carries the authenticated account.

Layer rule: no imports from api/. The store is resolved from
request.app.state.session_store at dispatch time so tests can swap it.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from itsdangerous import BadSignature, TimestampSigner
from sqlalchemy import Column, MetaData, String, Table, Text
from sqlalchemy.engine import Engine
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger("whiskeycanon.sessions")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("sid", String(64), primary_key=True),
    Column("data", Text, nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# Session value object
# ---------------------------------------------------------------------------


@dataclass
class Session:
    """Per-request view of one server-side session.

    `sid` is None until something needs to be persisted; ensure_id() assigns
    one. Writes through the properties mark the session modified so the
    middleware knows to save it.
    """

    sid: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    is_new: bool = True
    modified: bool = False
    destroyed: bool = False
    replaced_sid: str | None = None

    def ensure_id(self) -> str:
        if self.sid is None:
            self.sid = secrets.token_urlsafe(32)
            self.modified = True
        return self.sid

    @property
    def account_id(self) -> int | None:
        return self.data.get("account_id")

    @account_id.setter
    def account_id(self, value: int | None) -> None:
        self.ensure_id()
        if value is None:
            self.data.pop("account_id", None)
        else:
            self.data["account_id"] = value
        self.modified = True

    @property
    def csrf_initialized(self) -> bool:
        return bool(self.data.get("csrf_initialized"))

    def mark_csrf_initialized(self) -> None:
        self.ensure_id()
        self.data["csrf_initialized"] = True
        self.modified = True

    def rotate(self) -> str:
        """Move the data to a fresh id. The middleware deletes the old row."""
        if self.sid is not None and not self.is_new:
            self.replaced_sid = self.sid
        self.sid = secrets.token_urlsafe(32)
        self.is_new = True
        self.modified = True
        return self.sid

    def destroy(self) -> None:
        """Drop all data. The middleware deletes the row and the cookie."""
        self.data.clear()
        self.destroyed = True


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for session rows. Shares the Engine with AccountStore."""

    def __init__(self, engine: Engine, max_age_seconds: int) -> None:
        self.engine = engine
        self.max_age_seconds = max_age_seconds
        _metadata.create_all(self.engine)

    def load(self, sid: str) -> Session | None:
        """Return the live session for `sid`, or None if missing or expired."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.sid == sid)).fetchone()
        if row is None:
            return None
        if datetime.fromisoformat(row.expires_at) <= datetime.now(timezone.utc):
            return None
        try:
            data = json.loads(row.data)
        except json.JSONDecodeError:
            logger.warning("Discarding session with corrupt data")
            return None
        return Session(sid=sid, data=data, is_new=False)

    def save(self, session: Session) -> None:
        """Upsert the session and push its expiry forward."""
        sid = session.ensure_id()
        expires_at = (datetime.now(timezone.utc) + timedelta(seconds=self.max_age_seconds)).isoformat()
        payload = json.dumps(session.data)
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.sid == sid).values(data=payload, expires_at=expires_at)
            )
            if result.rowcount == 0:
                conn.execute(_sessions.insert().values(sid=sid, data=payload, expires_at=expires_at))
            conn.commit()

    def delete(self, sid: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.sid == sid))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        now = datetime.now(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= now))
            conn.commit()
        return result.rowcount


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class ServerSessionMiddleware(BaseHTTPMiddleware):
    """Load the session before the route runs; persist or destroy it after.

    Exposes the Session as request.state.session. Store calls are synchronous
    SQLAlchemy and run in the thread pool so the event loop is not blocked.
    """

    def __init__(
        self,
        app: ASGIApp,
        secret_key: str,
        cookie_name: str = "sid",
        max_age: int = 7 * 24 * 60 * 60,
        secure: bool = False,
        samesite: str = "lax",
    ) -> None:
        super().__init__(app)
        self.signer = TimestampSigner(secret_key, salt="whiskeycanon.session")
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure
        self.samesite = samesite

    async def dispatch(self, request: Request, call_next) -> Response:
        store: SessionStore = request.app.state.session_store
        session = await run_in_threadpool(self._load, store, request.cookies.get(self.cookie_name))
        request.state.session = session

        response = await call_next(request)

        if session.replaced_sid is not None:
            await run_in_threadpool(store.delete, session.replaced_sid)
        if session.destroyed:
            if session.sid is not None and not session.is_new:
                await run_in_threadpool(store.delete, session.sid)
            response.delete_cookie(self.cookie_name, path="/")
        elif session.sid is not None and (session.modified or not session.is_new):
            await run_in_threadpool(store.save, session)
            response.set_cookie(
                self.cookie_name,
                self.signer.sign(session.sid).decode("utf-8"),
                max_age=self.max_age,
                path="/",
                httponly=True,
                secure=self.secure,
                samesite=self.samesite,
            )
        return response

    def _load(self, store: SessionStore, cookie: str | None) -> Session:
        if not cookie:
            return Session()
        try:
            sid = self.signer.unsign(cookie, max_age=self.max_age).decode("utf-8")
        except BadSignature:
            # SignatureExpired is a subclass; both mean "start fresh".
            return Session()
        return store.load(sid) or Session()

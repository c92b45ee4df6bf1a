"""Tests for auth/sessions.py -- server-side session storage and the signed cookie."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from conftest import AppContext, csrf_headers, login, make_account
from itsdangerous import TimestampSigner
from sqlalchemy import update

from api.main import _purge_loop
from auth.service import ResendCooldown
from auth.sessions import Session, SessionStore, _sessions
from core.config import get_settings


def _sid_from_cookie(cookie: str) -> str:
    return TimestampSigner(get_settings().secret_key, salt="whiskeycanon.session").unsign(cookie).decode("utf-8")


class TestSessionValue:
    def test_new_session_has_no_id(self):
        session = Session()
        assert session.sid is None
        assert not session.modified

    def test_setting_account_assigns_id_and_marks_modified(self):
        session = Session()
        session.account_id = 7
        assert session.sid is not None
        assert session.modified
        assert session.account_id == 7

    def test_destroy_clears_data(self):
        session = Session(sid="abc", data={"account_id": 1}, is_new=False)
        session.destroy()
        assert session.destroyed
        assert session.account_id is None


class TestSessionStore:
    def test_save_and_load_round_trip(self, store):
        sessions = SessionStore(store.engine, max_age_seconds=60)
        session = Session()
        session.account_id = 42
        sessions.save(session)

        loaded = sessions.load(session.sid)
        assert loaded is not None
        assert loaded.account_id == 42
        assert not loaded.is_new

    def test_expired_session_not_loaded_and_purged(self, store):
        sessions = SessionStore(store.engine, max_age_seconds=60)
        session = Session()
        session.account_id = 1
        sessions.save(session)
        past = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        with store.engine.connect() as conn:
            conn.execute(update(_sessions).where(_sessions.c.sid == session.sid).values(expires_at=past))
            conn.commit()

        assert sessions.load(session.sid) is None
        assert sessions.purge_expired() == 1

    def test_delete(self, store):
        sessions = SessionStore(store.engine, max_age_seconds=60)
        session = Session()
        session.account_id = 1
        sessions.save(session)
        sessions.delete(session.sid)
        assert sessions.load(session.sid) is None


class TestSessionMiddleware:
    def test_anonymous_request_sets_no_cookie(self, app_ctx: AppContext):
        resp = app_ctx.client.get("/api/v1/users")
        assert "sid" not in resp.cookies

    def test_tampered_cookie_is_ignored(self, app_ctx: AppContext):
        make_account(app_ctx.store, "ada")
        login(app_ctx.client, "ada")
        sid_cookie = app_ctx.client.cookies.get("sid")
        app_ctx.client.cookies.clear()
        app_ctx.client.cookies.set("sid", sid_cookie[:-2] + "xx")
        resp = app_ctx.client.get("/api/v1/auth/me")
        assert resp.status_code == 401

    def test_unsigned_session_id_is_ignored(self, app_ctx: AppContext):
        app_ctx.client.cookies.set("sid", "forged-session-id")
        assert app_ctx.client.get("/api/v1/auth/me").status_code == 401

    def test_login_issues_new_session_id(self, app_ctx: AppContext):
        make_account(app_ctx.store, "ada")
        client = app_ctx.client
        csrf_headers(client)
        before = client.cookies.get("sid")
        assert login(client, "ada").status_code == 200
        after = client.cookies.get("sid")
        assert after and after != before

    def test_pre_login_session_id_is_not_authenticated(self, app_ctx: AppContext):
        """A session id known before login never becomes a logged-in session."""
        make_account(app_ctx.store, "ada")
        client = app_ctx.client
        csrf_headers(client)
        planted = client.cookies.get("sid")
        login(client, "ada")
        assert client.get("/api/v1/auth/me").status_code == 200

        client.cookies.clear()
        client.cookies.set("sid", planted)
        assert client.get("/api/v1/auth/me").status_code == 401


class TestSessionRotate:
    def test_rotate_records_persisted_id(self):
        session = Session(sid="abc", data={"account_id": 1}, is_new=False)
        new_sid = session.rotate()
        assert new_sid != "abc"
        assert session.sid == new_sid
        assert session.replaced_sid == "abc"
        assert session.is_new and session.modified
        assert session.account_id == 1

    def test_rotate_unsaved_session_has_nothing_to_replace(self):
        session = Session()
        session.rotate()
        assert session.sid is not None
        assert session.replaced_sid is None

    def test_old_row_deleted_after_rotation(self, app_ctx: AppContext):
        make_account(app_ctx.store, "ada")
        client = app_ctx.client
        csrf_headers(client)
        sessions: SessionStore = client.app.state.session_store
        old_sid = _sid_from_cookie(client.cookies.get("sid"))
        assert sessions.load(old_sid) is not None
        login(client, "ada")
        assert sessions.load(old_sid) is None


class TestPurgeLoop:
    def test_failed_pass_does_not_stop_the_loop(self):
        calls = {"sessions": 0}

        def purge_sessions() -> int:
            calls["sessions"] += 1
            if calls["sessions"] == 1:
                raise RuntimeError("dictionary changed size during iteration")
            return 0

        app = SimpleNamespace(
            state=SimpleNamespace(
                session_store=SimpleNamespace(purge_expired=purge_sessions),
                auth_service=SimpleNamespace(cooldown=ResendCooldown(60)),
            )
        )
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(asyncio.wait_for(_purge_loop(app, interval=0), timeout=0.2))
        assert calls["sessions"] > 1, "Loop must keep running after a failed pass"

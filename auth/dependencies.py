"""
auth/dependencies.py -- Identity resolution and FastAPI Depends() helpers.

The principal (the authenticated Account) is resolved exactly once per
request by IdentityMiddleware and stored on request.state.principal.
Handlers never reach into the session themselves; they receive the
principal as an explicit parameter:

    @router.get("/protected")
    def route(user: Account = Depends(get_current_user)): ...

get_principal() is the soft variant (None when anonymous).
get_current_user() raises AuthenticationError (401) when anonymous.

A session whose account_id no longer exists (account deleted by an admin)
resolves to no principal rather than an error.

Layer rule: no imports from api/. This module may import from fastapi and
starlette because it is part of the dependency injection system.
"""

from __future__ import annotations

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from auth.errors import AuthenticationError
from auth.models import Account
from auth.sessions import Session
from auth.store import AccountStore


def resolve_principal(request: Request) -> Account | None:
    """Map the request's session to an Account. Never raises for a bad session."""
    session: Session | None = getattr(request.state, "session", None)
    if session is None or session.account_id is None:
        return None
    store: AccountStore = request.app.state.account_store
    return store.get_by_id(session.account_id)


class IdentityMiddleware(BaseHTTPMiddleware):
    """Populate request.state.principal. Innermost middleware."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.principal = await run_in_threadpool(resolve_principal, request)
        return await call_next(request)


def get_principal(request: Request) -> Account | None:
    """Return the current principal or None. Never raises."""
    return getattr(request.state, "principal", None)


def get_current_user(request: Request) -> Account:
    """Require an authenticated principal. Raises AuthenticationError (401)."""
    principal = get_principal(request)
    if principal is None:
        raise AuthenticationError()
    return principal

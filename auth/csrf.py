"""
auth/csrf.py -- Double-submit CSRF defense bound to the server-side session.

Token derivation:
  token = hex(HMAC-SHA256(SECRET_KEY, "csrf:" + session_id))

The token is handed to the client twice: in the JSON body of
GET /api/v1/auth/csrf-token and in the non-HttpOnly `__csrf` cookie. Every
state-changing request must echo it in the X-CSRF-Token header. A request
passes only when the cookie is present, the header equals the cookie, and
both equal the token recomputed from the CURRENT session id. A token minted
for one session is therefore useless in another, and a cross-site form post
cannot set the header at all.

GET, HEAD and OPTIONS are never checked.

Comparisons use hmac.compare_digest throughout.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from auth.errors import CsrfError
from auth.sessions import Session

logger = logging.getLogger("whiskeycanon.csrf")

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class CsrfGuard:
    """Issues and validates double-submit tokens.

    One instance lives on app.state.csrf_guard; CSRFMiddleware and the
    issuance route share it.
    """

    def __init__(
        self,
        secret: str,
        *,
        secure: bool = False,
        samesite: str = "lax",
        cookie_name: str = "__csrf",
        header_name: str = "X-CSRF-Token",
    ) -> None:
        self._secret = secret.encode("utf-8")
        self.secure = secure
        self.samesite = samesite
        self.cookie_name = cookie_name
        self.header_name = header_name

    def token_for(self, session_id: str) -> str:
        return hmac.new(self._secret, f"csrf:{session_id}".encode(), hashlib.sha256).hexdigest()

    def issue_token(self, session: Session, response: Response) -> str:
        """Bind a token to the session, set the cookie and return the token."""
        session.mark_csrf_initialized()
        token = self.token_for(session.ensure_id())
        response.set_cookie(
            self.cookie_name,
            token,
            path="/",
            httponly=False,  # the frontend reads it to fill the header
            secure=self.secure,
            samesite=self.samesite,
        )
        return token

    def validate(self, request: Request) -> bool:
        if request.method in SAFE_METHODS:
            return True

        session: Session | None = getattr(request.state, "session", None)
        if session is None or session.sid is None:
            return False

        cookie = request.cookies.get(self.cookie_name)
        header = request.headers.get(self.header_name)
        if not cookie or not header:
            return False

        expected = self.token_for(session.sid)
        return hmac.compare_digest(cookie, header) and hmac.compare_digest(header, expected)


class CSRFMiddleware(BaseHTTPMiddleware):
    """Reject state-changing requests that fail CsrfGuard.validate() with 403.

    Must sit inside ServerSessionMiddleware so request.state.session exists.
    """

    def __init__(self, app: ASGIApp, guard: CsrfGuard | None = None) -> None:
        super().__init__(app)
        self._guard = guard

    async def dispatch(self, request: Request, call_next) -> Response:
        guard: CsrfGuard = self._guard or request.app.state.csrf_guard
        if not guard.validate(request):
            logger.warning("CSRF validation failed: %s %s", request.method, request.url.path)
            err = CsrfError()
            return JSONResponse(status_code=err.status_code, content={"error": err.to_detail()})
        return await call_next(request)

"""
api/routes/v1/auth.py -- Registration, verification, session and profile endpoints.

Routes:
  GET  /api/v1/auth/csrf-token           -- issue CSRF token (body + __csrf cookie)
  POST /api/v1/auth/register             -- create unverified account, mail code
  POST /api/v1/auth/verify-email         -- check 8-character code
  POST /api/v1/auth/resend-verification  -- fresh code (60 s cooldown per email)
  POST /api/v1/auth/login                -- bind account to session
  POST /api/v1/auth/logout               -- destroy session (idempotent)
  GET  /api/v1/auth/me                   -- current account (requires auth)
  PUT  /api/v1/auth/profile              -- email/name/password (requires auth)
  PUT  /api/v1/auth/profile/visibility   -- public/private profile (requires auth)
  POST /api/v1/auth/forgot-password      -- mail reset link (silent for unknown email)
  POST /api/v1/auth/reset-password       -- consume reset token

Security:
  Every POST/PUT passes through CSRFMiddleware; clients fetch /csrf-token first.
  register, login and resend-verification share the `auth` rate class;
  forgot-password and reset-password share `password_reset`.
  Cache-Control: no-store on every response that carries account data.
  Handlers are sync `def` so blocking store and bcrypt calls run in the
  thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import RateLimitClass, rate_limit
from api.models import (
    AccountResponse,
    CsrfTokenResponse,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    ProfileUpdate,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    UserEnvelope,
    VerifyEmailRequest,
    VisibilityUpdate,
)
from auth.csrf import CsrfGuard
from auth.dependencies import get_current_user
from auth.models import Account
from auth.service import AuthService

# Auth policy:
# - GET  /auth/csrf-token, /auth/logout and the pre-login flows: public
# - GET  /auth/me, PUT /auth/profile, PUT /auth/profile/visibility: get_current_user
router = APIRouter()

_auth_limit = Depends(rate_limit(RateLimitClass.auth))
_reset_limit = Depends(rate_limit(RateLimitClass.password_reset))

RESEND_MESSAGE = "If an account with that email exists, a new verification code has been sent."
FORGOT_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


# ---------------------------------------------------------------------------
# CSRF
# ---------------------------------------------------------------------------


@router.get("/auth/csrf-token", response_model=CsrfTokenResponse)
def csrf_token(request: Request, response: Response) -> CsrfTokenResponse:
    """Issue a token bound to the current session, creating the session if needed."""
    guard: CsrfGuard = request.app.state.csrf_guard
    token = guard.issue_token(request.state.session, response)
    _no_store(response)
    return CsrfTokenResponse(csrf_token=token)


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201, dependencies=[_auth_limit])
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an account in the unverified state and mail its code.

    A failed send is reported as emailSent=false; the account still exists
    and the user can request a resend.
    """
    result = _service(request).register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    message = (
        "User created successfully. Please check your email for a verification code."
        if result.email_sent
        else "User created successfully, but the verification email could not be sent. Please request a new code."
    )
    return RegisterResponse(
        message=message,
        user=AccountResponse.from_account(result.account),
        email_sent=result.email_sent,
    )


@router.post("/auth/verify-email", response_model=UserEnvelope)
def verify_email(request: Request, body: VerifyEmailRequest) -> UserEnvelope:
    account = _service(request).verify_email(body.email, body.code)
    return UserEnvelope(message="Email verified successfully", user=AccountResponse.from_account(account))


@router.post("/auth/resend-verification", response_model=MessageResponse, dependencies=[_auth_limit])
def resend_verification(request: Request, body: EmailRequest) -> MessageResponse:
    """Same body whether or not the email is registered."""
    _service(request).resend_verification(body.email)
    return MessageResponse(message=RESEND_MESSAGE)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=UserEnvelope, dependencies=[_auth_limit])
def login(request: Request, response: Response, body: LoginRequest) -> UserEnvelope:
    """Authenticate with username and password and bind the account to the session.

    Unknown username and wrong password produce the same 401 body.
    Unverified accounts get 403 with requiresVerification=true.

    Login moves the session to a new id, so the CSRF cookie is re-issued for
    it here; the token fetched before login no longer validates.
    """
    account = _service(request).login(body.username, body.password, request.state.session)
    guard: CsrfGuard = request.app.state.csrf_guard
    guard.issue_token(request.state.session, response)
    _no_store(response)
    return UserEnvelope(message="Login successful", user=AccountResponse.from_account(account))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    _service(request).logout(request.state.session)
    return MessageResponse(message="Logout successful")


@router.get("/auth/me", response_model=UserEnvelope)
def me(response: Response, current_user: Account = Depends(get_current_user)) -> UserEnvelope:
    _no_store(response)
    return UserEnvelope(user=AccountResponse.from_account(current_user))


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.put("/auth/profile", response_model=UserEnvelope)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: Account = Depends(get_current_user),
) -> UserEnvelope:
    """Update email, names and/or password.

    A password change requires currentPassword; it is checked before anything
    is written.
    """
    account = _service(request).update_profile(
        current_user,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        current_password=body.current_password,
        new_password=body.new_password,
    )
    return UserEnvelope(message="Profile updated successfully", user=AccountResponse.from_account(account))


@router.put("/auth/profile/visibility", response_model=UserEnvelope)
def update_visibility(
    request: Request,
    body: VisibilityUpdate,
    current_user: Account = Depends(get_current_user),
) -> UserEnvelope:
    account = _service(request).set_profile_visibility(current_user, body.is_profile_public)
    return UserEnvelope(message="Profile visibility updated", user=AccountResponse.from_account(account))


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse, dependencies=[_reset_limit])
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Same body whether or not the email is registered or verified."""
    _service(request).forgot_password(body.email)
    return MessageResponse(message=FORGOT_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse, dependencies=[_reset_limit])
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    _service(request).reset_password(body.token, body.password)
    return MessageResponse(message="Password has been reset successfully. You can now log in.")

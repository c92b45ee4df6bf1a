"""
auth/errors.py -- Exception taxonomy for identity and access control.

Every expected rejection in the auth flows is one of these classes. Each class
carries a stable HTTP status and machine-readable code; api/main.py maps them
to the shared {"error": {...}} envelope in one exception handler.

Extra keyword arguments become additional fields on the error payload (e.g.
required/role on AuthorizationError, requiresVerification on
UnverifiedEmailError).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for every error the auth layer raises on purpose."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ) -> None:
        self.message = message or self.message
        if code is not None:
            self.code = code
        self.headers = headers or {}
        self.extra = extra
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class ValidationError(AuthError):
    """Malformed or policy-violating input. `errors` holds batched messages."""

    status_code = 400
    code = "validation_error"
    message = "Validation failed."

    def __init__(self, message: Optional[str] = None, *, errors: Optional[list[str]] = None, **kwargs: Any) -> None:
        if errors is not None:
            kwargs["errors"] = errors
            message = message or ". ".join(errors)
        super().__init__(message, **kwargs)


class ConflictError(AuthError):
    """Duplicate username or email."""

    status_code = 400
    code = "conflict"
    message = "Resource already exists."


class ExpiredTokenError(AuthError):
    """Verification code or password reset token past its expiry."""

    status_code = 400
    code = "token_expired"
    message = "Token has expired."


class AuthenticationError(AuthError):
    """No session, or credentials that do not check out. Always generic."""

    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentialsError(AuthenticationError):
    # Identical for unknown username and wrong password.
    code = "bad_credentials"
    message = "Invalid credentials."


class AuthorizationError(AuthError):
    """Valid principal without the required role or permission."""

    status_code = 403
    code = "forbidden"
    message = "Insufficient permissions."


class UnverifiedEmailError(AuthError):
    status_code = 403
    code = "email_not_verified"
    message = "Please verify your email address before logging in."

    def __init__(self, message: Optional[str] = None, **kwargs: Any) -> None:
        kwargs.setdefault("requiresVerification", True)
        super().__init__(message, **kwargs)


class CsrfError(AuthError):
    status_code = 403
    code = "invalid_csrf_token"
    message = "Invalid CSRF token."


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    message = "Not found."


class ThrottledError(AuthError):
    """Rate-limit or attempt cap exceeded."""

    status_code = 429
    code = "rate_limited"
    message = "Too many requests. Please try again later."

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after is not None:
            self.headers.setdefault("Retry-After", str(retry_after))


class InternalError(AuthError):
    """Store, email or upstream failure. The message never carries internals."""

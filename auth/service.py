"""
auth/service.py -- Account lifecycle workflows.

AuthService composes the account store, password policy, token service,
mailer and resend cooldown into the account state machine:

  Unregistered --register--> PendingVerification --verify_email--> Verified
  Verified --login--> Authenticated (per session) --logout--> Verified
  Verified --forgot_password / reset_password--> Verified (new password)

Routes call exactly one service method per request and translate nothing:
every expected rejection is an AuthError subclass that api/main.py maps to
the error envelope.

Anti-enumeration:
  resend_verification() and forgot_password() return normally for unknown
  emails. Registration conflicts are the deliberate exception.

Store failures:
  Every store call runs inside _guard(). SQLAlchemyError is logged with full
  detail and re-raised as an opaque InternalError. IntegrityError on
  create_account() is a concurrent duplicate and becomes ConflictError.

Concurrency:
  Two concurrent verify_email() calls for one account can both read
  attempts < MAX_VERIFICATION_ATTEMPTS before either increments. The cap is
  a throttle, not a hard boundary, and is left unlocked.
  reset_password() consumes the token with a single conditional row update,
  so a token cannot be used twice.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import math
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AuthenticationError,
    ConflictError,
    ExpiredTokenError,
    InternalError,
    InvalidCredentialsError,
    NotFoundError,
    ThrottledError,
    UnverifiedEmailError,
    ValidationError,
)
from auth.models import Account, Role
from auth.password_policy import is_password_breached, validate_password
from auth.sessions import Session
from auth.store import AccountStore
from auth.tokens import (
    MAX_VERIFICATION_ATTEMPTS,
    authenticate_user,
    generate_password_reset_token,
    generate_verification_code,
    hash_password,
    is_expired,
    password_reset_expiry,
    utcnow,
    verification_expiry,
    verify_password,
)
from core.config import get_settings

logger = logging.getLogger("whiskeycanon.auth")


class EmailSender(Protocol):
    def send_verification_email(self, to: str, code: str) -> bool: ...

    def send_password_reset_email(self, to: str, token: str) -> bool: ...


@dataclass(frozen=True)
class RegistrationResult:
    account: Account
    email_sent: bool


# ---------------------------------------------------------------------------
# Resend cooldown
# ---------------------------------------------------------------------------


class ResendCooldown:
    """Per-email minimum interval between verification-code resends.

    Process-local and lost on restart. Keys are normalized emails. Request
    handlers touch it from the thread pool while the purge task sweeps it, so
    every access holds the lock.
    """

    def __init__(self, seconds: float = 60, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._last_sent: dict[str, float] = {}
        self._lock = threading.Lock()

    def remaining(self, email: str) -> float:
        with self._lock:
            last = self._last_sent.get(email)
        if last is None:
            return 0.0
        return max(0.0, self.seconds - (self._clock() - last))

    def touch(self, email: str) -> None:
        with self._lock:
            self._last_sent[email] = self._clock()

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [email for email, last in self._last_sent.items() if now - last >= self.seconds]
            for email in stale:
                del self._last_sent[email]
        return len(stale)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def _guard(action: str) -> Iterator[None]:
    """Collapse store failures into InternalError. Logs the real cause."""
    try:
        yield
    except IntegrityError as exc:
        logger.warning("Integrity violation during %s: %s", action, exc.orig)
        raise ConflictError("Username or email already exists.") from exc
    except SQLAlchemyError as exc:
        logger.exception("Store failure during %s", action)
        raise InternalError(f"Failed to {action}.") from exc


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthService:
    def __init__(
        self,
        store: AccountStore,
        mailer: EmailSender,
        *,
        breach_check: Callable[[str], bool] = is_password_breached,
        cooldown: ResendCooldown | None = None,
        clock: Callable[[], datetime] = utcnow,
        default_role: Role | str | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.mailer = mailer
        self.breach_check = breach_check
        self.cooldown = cooldown or ResendCooldown(settings.resend_cooldown_seconds)
        self.clock = clock
        self.default_role = Role(default_role or settings.default_role)

    def _validate_password(self, password: str) -> None:
        validate_password(password, breach_check=self.breach_check)

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> RegistrationResult:
        """Create an unverified account and mail its first verification code.

        A failed send does not fail registration; the caller reports
        email_sent=False and the user can request a resend.
        """
        email = _normalize_email(email)
        with _guard("create user"):
            if self.store.get_by_username(username) is not None:
                raise ConflictError("Username already exists")
            if self.store.get_by_email(email) is not None:
                raise ConflictError("Email already exists")

        self._validate_password(password)

        code = generate_verification_code()
        account = Account(
            username=username,
            email=email,
            role=self.default_role,
            hashed_password=hash_password(password),
            first_name=first_name or None,
            last_name=last_name or None,
            email_verified=False,
            verification_code=code,
            verification_code_expires_at=verification_expiry(self.clock()).isoformat(),
        )
        with _guard("create user"):
            account.id = self.store.create_account(account)
            created = self.store.get_by_id(account.id)

        email_sent = self.mailer.send_verification_email(email, code)
        if not email_sent:
            logger.warning("Verification email not sent for new account id=%s", account.id)
        logger.info("Registered account id=%s role=%s", account.id, self.default_role.value)
        return RegistrationResult(account=created or account, email_sent=email_sent)

    def verify_email(self, email: str, code: str) -> Account:
        """Check a verification code.

        The attempt counter is incremented before the expiry check, so a guess
        against an expired code still spends one of the attempts.
        """
        email = _normalize_email(email)
        with _guard("verify email"):
            account = self.store.get_by_email(email)
        if account is None:
            raise NotFoundError("No account found with that email.")
        if account.email_verified:
            raise ValidationError("Email is already verified.", code="already_verified")
        if account.verification_code_attempts >= MAX_VERIFICATION_ATTEMPTS:
            logger.warning("Verification attempts exhausted for account id=%s", account.id)
            raise ThrottledError(
                "Too many verification attempts. Please request a new code.",
                code="too_many_attempts",
            )

        with _guard("verify email"):
            attempts = self.store.increment_verification_attempts(account.id)

        if is_expired(account.verification_code_expires_at, self.clock()):
            raise ExpiredTokenError("Verification code has expired. Please request a new code.")

        submitted = (code or "").strip().upper()
        expected = (account.verification_code or "").upper()
        if not expected or not hmac.compare_digest(submitted, expected):
            raise ValidationError(
                "Invalid verification code.",
                code="invalid_code",
                attemptsRemaining=max(0, MAX_VERIFICATION_ATTEMPTS - attempts),
            )

        with _guard("verify email"):
            verified = self.store.mark_email_verified(account.id)
        logger.info("Email verified for account id=%s", account.id)
        return verified or account

    def resend_verification(self, email: str) -> bool:
        """Issue and mail a fresh code. Returns False for unknown emails."""
        email = _normalize_email(email)
        with _guard("resend verification"):
            account = self.store.get_by_email(email)
        if account is None:
            return False
        if account.email_verified:
            raise ValidationError("Email is already verified.", code="already_verified")

        wait = self.cooldown.remaining(email)
        if wait > 0:
            raise ThrottledError(
                "Please wait before requesting another code.",
                code="resend_cooldown",
                retry_after=math.ceil(wait),
            )

        code = generate_verification_code()
        with _guard("resend verification"):
            self.store.set_verification_code(account.id, code, verification_expiry(self.clock()).isoformat())
        self.cooldown.touch(email)

        sent = self.mailer.send_verification_email(email, code)
        if not sent:
            logger.warning("Verification resend not delivered for account id=%s", account.id)
        return sent

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, session: Session) -> Account:
        """Bind the account to `session`.

        Unknown username and wrong password raise the same
        InvalidCredentialsError. Credentials are checked before verification
        status so the 403 never reveals anything to someone without the
        password. The session id is rotated so an id planted before login
        never becomes authenticated.
        """
        with _guard("login"):
            account = authenticate_user(self.store, username, password)
        if account is None:
            raise InvalidCredentialsError()
        if not account.email_verified:
            raise UnverifiedEmailError()

        session.rotate()
        session.account_id = account.id
        with _guard("login"):
            self.store.update_last_login(account.id)
        logger.info("Login account id=%s", account.id)
        return account

    def logout(self, session: Session) -> None:
        session.destroy()

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def update_profile(
        self,
        account: Account,
        *,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        current_password: str | None = None,
        new_password: str | None = None,
    ) -> Account:
        """Apply self-service profile edits.

        Every check (current password, new password policy, email uniqueness)
        runs before the write, and the profile fields and new hash land in a
        single update.
        """
        if new_password:
            if not current_password:
                raise ValidationError("Current password is required to change password", code="current_password_required")
            if not account.hashed_password or not verify_password(current_password, account.hashed_password):
                raise AuthenticationError("Current password is incorrect", code="bad_credentials")
            self._validate_password(new_password)

        fields: dict[str, str | None] = {}
        if email is not None:
            normalized = _normalize_email(email)
            if normalized != account.email:
                with _guard("update profile"):
                    other = self.store.get_by_email(normalized)
                if other is not None and other.id != account.id:
                    raise ConflictError("Email already in use")
                fields["email"] = normalized
        if first_name is not None:
            fields["first_name"] = first_name
        if last_name is not None:
            fields["last_name"] = last_name

        hashed = hash_password(new_password) if new_password else None
        if not fields and hashed is None:
            return account
        with _guard("update profile"):
            updated = self.store.update_profile(account.id, hashed_password=hashed, **fields)
        if hashed is not None and updated is not None:
            logger.info("Password changed for account id=%s", account.id)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    def set_profile_visibility(self, account: Account, is_public: bool) -> Account:
        with _guard("update profile visibility"):
            updated = self.store.update_visibility(account.id, is_public)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Issue a reset token and mail the link. Silent for unknown or unverified emails."""
        email = _normalize_email(email)
        with _guard("request password reset"):
            account = self.store.get_by_email(email)
        if account is None or not account.email_verified:
            return

        token = generate_password_reset_token()
        with _guard("request password reset"):
            self.store.set_password_reset_token(account.id, token, password_reset_expiry(self.clock()).isoformat())

        if not self.mailer.send_password_reset_email(email, token):
            logger.warning("Password reset email not delivered for account id=%s", account.id)

    def reset_password(self, token: str, new_password: str) -> Account:
        """Consume a reset token and set the new password.

        An expired token is cleared before the rejection so it cannot be
        retried.
        """
        with _guard("reset password"):
            account = self.store.get_by_reset_token(token)
        if account is None:
            raise ValidationError("Invalid or expired reset token", code="invalid_token")
        if is_expired(account.password_reset_expires_at, self.clock()):
            with _guard("reset password"):
                self.store.clear_password_reset_token(account.id)
            raise ExpiredTokenError("Invalid or expired reset token")

        self._validate_password(new_password)

        with _guard("reset password"):
            consumed = self.store.complete_password_reset(account.id, token, hash_password(new_password))
            updated = self.store.get_by_id(account.id)
        if not consumed or updated is None:
            raise ValidationError("Invalid or expired reset token", code="invalid_token")
        logger.info("Password reset completed for account id=%s", account.id)
        return updated

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_accounts(self) -> list[Account]:
        with _guard("fetch users"):
            return self.store.list_accounts()

    def change_role(self, actor: Account, target_id: int, role: Role) -> Account:
        if target_id == actor.id:
            raise ValidationError("Cannot change your own role", code="self_role_change")
        with _guard("update user role"):
            updated = self.store.update_role(target_id, role)
        if updated is None:
            raise NotFoundError("User not found")
        logger.info("Account id=%s role set to %s by id=%s", target_id, Role(role).value, actor.id)
        return updated

    def admin_update_profile(
        self,
        target_id: int,
        *,
        username: str | None = None,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> Account:
        fields: dict[str, str | None] = {}
        with _guard("update user profile"):
            if self.store.get_by_id(target_id) is None:
                raise NotFoundError("User not found")
            if email is not None:
                email = _normalize_email(email)
                other = self.store.get_by_email(email)
                if other is not None and other.id != target_id:
                    raise ConflictError("Email already in use")
                fields["email"] = email
            if username is not None:
                other = self.store.get_by_username(username)
                if other is not None and other.id != target_id:
                    raise ConflictError("Username already in use")
                fields["username"] = username
            if first_name is not None:
                fields["first_name"] = first_name
            if last_name is not None:
                fields["last_name"] = last_name
            updated = self.store.update_profile(target_id, **fields)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    def delete_account(self, actor: Account, target_id: int) -> None:
        if target_id == actor.id:
            raise ValidationError("Cannot delete your own account", code="self_delete")
        with _guard("delete user"):
            deleted = self.store.delete_account(target_id)
        if not deleted:
            raise NotFoundError("User not found")
        logger.info("Account id=%s deleted by id=%s", target_id, actor.id)

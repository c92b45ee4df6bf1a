"""
auth/tokens.py -- Password hashing, verification codes and reset tokens.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Cost factor comes from
       Settings.bcrypt_rounds. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a username exists.

  Verification codes: 8 symbols from a 32-symbol alphabet with the visually
       ambiguous 0/O and 1/I removed. Optimized for typing from an email, not
       for secrecy; the 5-attempt cap and 15-minute expiry carry the load.

  Reset tokens: secrets.token_hex(32) -- 256 bits of entropy. This one IS a
       security boundary; no attempt cap is relied upon.

All generators are pure: they touch no store. Expiry helpers take an
optional `now` so callers (and tests) control the clock.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

logger = logging.getLogger("whiskeycanon.auth")

_settings = get_settings()

VERIFICATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
VERIFICATION_CODE_LENGTH = 8
VERIFICATION_CODE_TTL = timedelta(minutes=15)
MAX_VERIFICATION_ATTEMPTS = 5
PASSWORD_RESET_TTL = timedelta(minutes=60)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt rejects inputs over 72 bytes; the password policy caps length
    before this is ever reached.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("whiskeycanon_timing_dummy")


def authenticate_user(store: AccountStore, username: str, password: str) -> Account | None:
    """Check a username/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the Account on success, None on any failure. Email verification
    is NOT checked here; the login flow decides what an unverified match means.
    """
    account = store.get_by_username(username)
    if account is None or not account.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, account.hashed_password):
        return None
    return account


# ---------------------------------------------------------------------------
# Verification codes
# ---------------------------------------------------------------------------


def generate_verification_code() -> str:
    return "".join(secrets.choice(VERIFICATION_CODE_ALPHABET) for _ in range(VERIFICATION_CODE_LENGTH))


def verification_expiry(now: datetime | None = None) -> datetime:
    return (now or utcnow()) + VERIFICATION_CODE_TTL


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def generate_password_reset_token() -> str:
    return secrets.token_hex(32)


def password_reset_expiry(now: datetime | None = None) -> datetime:
    return (now or utcnow()) + PASSWORD_RESET_TTL


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


def is_expired(expires_at: str | datetime | None, now: datetime | None = None) -> bool:
    """Return True when `now` is strictly after `expires_at`.

    Accepts the ISO 8601 strings the store persists. A missing timestamp is
    treated as expired. Naive datetimes are assumed to be UTC.
    """
    if expires_at is None:
        return True
    if isinstance(expires_at, str):
        try:
            expires_at = datetime.fromisoformat(expires_at)
        except ValueError:
            logger.warning("Unparseable expiry timestamp %r treated as expired", expires_at)
            return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or utcnow()) > expires_at

"""
auth/password_policy.py -- Password complexity rules and breach-corpus check.

Rules, in the order validate_password() applies them:
  1. Length: at least 12 characters, at most 72 UTF-8 bytes (bcrypt limit).
  2. Complexity: at least 3 of {uppercase, lowercase, digit, non-alphanumeric}.
  3. Breach corpus: only checked once 1 and 2 pass.

Complexity violations are batched into one ValidationError so the user sees
every problem at once.

Breach check (k-anonymity): the password's SHA-1 digest is split into a
5-character prefix and a 35-character suffix. Only the prefix leaves the
process; the range API returns every known suffix for that prefix as
"SUFFIX:COUNT" lines and the comparison happens locally.

The breach lookup FAILS OPEN. A timeout, connection error or non-2xx status
means "not breached" so an outage of the range API never blocks
registration or password changes. The collapse happens in exactly one place:
is_password_breached().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

import requests

from auth.errors import ValidationError
from core.config import get_settings

logger = logging.getLogger("whiskeycanon.auth.password_policy")

MIN_PASSWORD_LENGTH = 12
MAX_PASSWORD_BYTES = 72
MIN_CHARACTER_TYPES = 3

LENGTH_MESSAGE = f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
MAX_LENGTH_MESSAGE = f"Password must be at most {MAX_PASSWORD_BYTES} bytes"
COMPLEXITY_MESSAGE = "Password must contain at least 3 of: uppercase, lowercase, digit, special character"
BREACHED_MESSAGE = "This password has been found in a data breach. Please choose a different password"

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")
_SPECIAL = re.compile(r"[^A-Za-z0-9]")

# Shared session for connection pooling. Redirects are not expected from the
# range API; 3 hops is generous.
_session = requests.Session()
_session.max_redirects = 3


@dataclass(frozen=True)
class ComplexityResult:
    meets_length: bool
    has_uppercase: bool
    has_lowercase: bool
    has_digit: bool
    has_special: bool
    character_types: int
    meets_complexity: bool
    reasons: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.reasons


def check_complexity(password: str) -> ComplexityResult:
    """Evaluate length and character-class rules without any I/O."""
    meets_length = len(password) >= MIN_PASSWORD_LENGTH
    within_limit = len(password.encode("utf-8")) <= MAX_PASSWORD_BYTES
    classes = [
        bool(_UPPER.search(password)),
        bool(_LOWER.search(password)),
        bool(_DIGIT.search(password)),
        bool(_SPECIAL.search(password)),
    ]
    character_types = sum(classes)
    meets_complexity = character_types >= MIN_CHARACTER_TYPES

    reasons: list[str] = []
    if not meets_length:
        reasons.append(LENGTH_MESSAGE)
    if not within_limit:
        reasons.append(MAX_LENGTH_MESSAGE)
    if not meets_complexity:
        reasons.append(COMPLEXITY_MESSAGE)

    return ComplexityResult(
        meets_length=meets_length,
        has_uppercase=classes[0],
        has_lowercase=classes[1],
        has_digit=classes[2],
        has_special=classes[3],
        character_types=character_types,
        meets_complexity=meets_complexity,
        reasons=reasons,
    )


def _fetch_range(prefix: str, timeout: float) -> str:
    """GET the suffix list for a 5-character SHA-1 prefix. Raises on any failure."""
    url = f"{get_settings().breach_check_url}{prefix}"
    resp = _session.get(url, timeout=timeout, headers={"Add-Padding": "true"})
    resp.raise_for_status()
    return resp.text


def is_password_breached(password: str, timeout: float | None = None) -> bool:
    """Return True if the password appears in the breach corpus.

    This is the single fail-open boundary: any requests error (timeout,
    connection failure, non-2xx via raise_for_status) is logged and reported
    as "not breached".
    """
    digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()  # noqa: S324 -- k-anonymity protocol, not storage
    prefix, suffix = digest[:5], digest[5:]
    try:
        body = _fetch_range(prefix, timeout if timeout is not None else get_settings().breach_check_timeout)
    except requests.RequestException as e:
        logger.warning("Breach check unavailable, failing open: %s", e)
        return False

    for line in body.splitlines():
        candidate, _, _count = line.partition(":")
        if candidate.strip().upper() == suffix:
            return True
    return False


def validate_password(password: str, breach_check: Callable[[str], bool] = is_password_breached) -> None:
    """Raise ValidationError if the password is unacceptable.

    Complexity reasons are batched; the breach check only runs when the
    password already satisfies the local rules.
    """
    result = check_complexity(password)
    if not result.valid:
        raise ValidationError(errors=result.reasons, code="weak_password")
    if breach_check(password):
        raise ValidationError(errors=[BREACHED_MESSAGE], code="breached_password")

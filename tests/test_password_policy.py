"""Unit tests for auth/password_policy.py.

The range API is never contacted: _session.get is patched for every breach
check test. Covers:
- Length and character-class rules, including the 72-byte bcrypt ceiling
- Batched complexity reasons
- Breach corpus match on the local suffix comparison
- Fail-open on timeout, connection error and non-2xx status
- validate_password() skips the breach check when complexity already failed
"""

import hashlib
from unittest.mock import MagicMock, patch

import pytest
import requests

from auth import password_policy
from auth.errors import ValidationError
from auth.password_policy import (
    BREACHED_MESSAGE,
    COMPLEXITY_MESSAGE,
    LENGTH_MESSAGE,
    check_complexity,
    is_password_breached,
    validate_password,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _range_response(password: str, include: bool, status: int = 200) -> MagicMock:
    """Build a fake range API response that does or does not list `password`."""
    digest = hashlib.sha1(password.encode()).hexdigest().upper()
    lines = ["0018A45C4D1DEF81644B54AB7F969B88D65:1", "00D4F6E8FA6EECAD2A3AA415EEC418D38EC:2"]
    if include:
        lines.append(f"{digest[5:]}:3861493")
    resp = MagicMock()
    resp.text = "\r\n".join(lines)
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error")
    return resp


# ---------------------------------------------------------------------------
# TestCheckComplexity
# ---------------------------------------------------------------------------


class TestCheckComplexity:
    def test_strong_password_is_valid(self):
        result = check_complexity("Barrel-Proof-1792")
        assert result.valid
        assert result.reasons == []
        assert result.character_types == 4

    def test_short_password_reports_length(self):
        result = check_complexity("Ab1!")
        assert not result.meets_length
        assert LENGTH_MESSAGE in result.reasons

    def test_exactly_twelve_characters_passes_length(self):
        assert check_complexity("Abcdefghij1!").meets_length

    def test_three_of_four_classes_is_enough(self):
        """Lowercase + uppercase + digit, no special character."""
        result = check_complexity("BourbonBarrel2024")
        assert result.valid
        assert not result.has_special

    def test_two_classes_fails_complexity(self):
        result = check_complexity("alllowercaseletters99")
        assert not result.meets_complexity
        assert result.reasons == [COMPLEXITY_MESSAGE]

    def test_reasons_are_batched(self):
        """A short single-class password reports both problems at once."""
        result = check_complexity("short")
        assert result.reasons == [LENGTH_MESSAGE, COMPLEXITY_MESSAGE]

    def test_over_72_bytes_rejected(self):
        result = check_complexity("Aa1!" * 19)  # 76 bytes
        assert not result.valid
        assert any("72" in r for r in result.reasons)

    def test_multibyte_characters_count_bytes_not_chars(self):
        # 46 characters but 89 bytes of UTF-8
        result = check_complexity("Aa1" + "é" * 43)
        assert not result.valid


# ---------------------------------------------------------------------------
# TestBreachCheck
# ---------------------------------------------------------------------------


class TestBreachCheck:
    def test_only_prefix_is_sent(self):
        password = "Barrel-Proof-1792"
        prefix = hashlib.sha1(password.encode()).hexdigest().upper()[:5]
        with patch.object(password_policy._session, "get", return_value=_range_response(password, False)) as get:
            is_password_breached(password)
        url = get.call_args.args[0]
        assert url.endswith(prefix)
        assert hashlib.sha1(password.encode()).hexdigest().upper()[5:] not in url

    def test_listed_suffix_is_breached(self):
        password = "Password1234!"
        with patch.object(password_policy._session, "get", return_value=_range_response(password, True)):
            assert is_password_breached(password) is True

    def test_unlisted_suffix_is_not_breached(self):
        password = "Barrel-Proof-1792"
        with patch.object(password_policy._session, "get", return_value=_range_response(password, False)):
            assert is_password_breached(password) is False

    @pytest.mark.parametrize(
        "error",
        [requests.Timeout("timed out"), requests.ConnectionError("refused")],
    )
    def test_network_failure_fails_open(self, error):
        with patch.object(password_policy._session, "get", side_effect=error):
            assert is_password_breached("Password1234!") is False

    def test_non_2xx_fails_open(self):
        password = "Password1234!"
        with patch.object(password_policy._session, "get", return_value=_range_response(password, True, status=503)):
            assert is_password_breached(password) is False

    def test_timeout_is_passed_through(self):
        with patch.object(password_policy._session, "get", return_value=_range_response("x", False)) as get:
            is_password_breached("Barrel-Proof-1792", timeout=1.5)
        assert get.call_args.kwargs["timeout"] == 1.5


# ---------------------------------------------------------------------------
# TestValidatePassword
# ---------------------------------------------------------------------------


class TestValidatePassword:
    def test_valid_password_passes(self):
        validate_password("Barrel-Proof-1792", breach_check=lambda pw: False)

    def test_complexity_failure_raises_with_all_reasons(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_password("short", breach_check=lambda pw: False)
        assert excinfo.value.status_code == 400
        assert excinfo.value.extra["errors"] == [LENGTH_MESSAGE, COMPLEXITY_MESSAGE]

    def test_breach_check_skipped_when_complexity_fails(self):
        breach_check = MagicMock(return_value=True)
        with pytest.raises(ValidationError):
            validate_password("short", breach_check=breach_check)
        breach_check.assert_not_called()

    def test_breached_password_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_password("Password1234!", breach_check=lambda pw: True)
        assert excinfo.value.extra["errors"] == [BREACHED_MESSAGE]
        assert "breach" in excinfo.value.message

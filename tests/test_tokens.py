"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - password strength rules, all violations reported at once
  - duration parsing and expiry arithmetic
  - refresh token entropy and uniqueness
  - user-agent labels
  - bcrypt hashing / verification edge cases
  - access token claims and the TOKEN_EXPIRED / INVALID_TOKEN split
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import AuthError, ErrorCode
from auth.tokens import (
    compute_expiry,
    generate_refresh_token,
    is_valid_email,
    normalize_email,
    parse_duration,
    parse_user_agent,
    validate_password_strength,
)

# ---------------------------------------------------------------------------
# Password strength
# ---------------------------------------------------------------------------


def test_short_password_reports_length():
    check = validate_password_strength("short1!")
    assert not check.valid
    assert any("at least 8 characters" in r for r in check.reasons)


def test_lowercase_only_password_reports_missing_uppercase():
    check = validate_password_strength("alllowercase1!")
    assert not check.valid
    assert any("uppercase" in r for r in check.reasons)


def test_strong_password_is_valid():
    check = validate_password_strength("GOOD-Pass123!")
    assert check.valid
    assert check.reasons == []


def test_every_violated_rule_is_reported():
    check = validate_password_strength("abc")
    assert not check.valid
    # length, uppercase, digit, special -- lowercase is satisfied
    assert len(check.reasons) == 4


def test_symbol_outside_special_set_does_not_count():
    check = validate_password_strength("GoodPass1-")
    assert not check.valid
    assert any("special character" in r for r in check.reasons)


# ---------------------------------------------------------------------------
# Email helpers
# ---------------------------------------------------------------------------


def test_email_validation():
    assert is_valid_email("alice@example.com")
    assert not is_valid_email("alice@example")
    assert not is_valid_email("alice example.com")
    assert not is_valid_email("")


def test_normalize_email_lowercases_and_strips():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("15m", timedelta(minutes=15)),
        ("24h", timedelta(hours=24)),
        ("7d", timedelta(days=7)),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["10s", "m", "", "7 days", "-1d"])
def test_parse_duration_rejects_unknown_formats(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_compute_expiry_is_relative_to_now():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert compute_expiry("2h", now=start) == datetime(2024, 1, 1, 2, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Refresh tokens and user agents
# ---------------------------------------------------------------------------


def test_refresh_tokens_are_long_and_unique():
    tokens = {generate_refresh_token() for _ in range(50)}
    assert len(tokens) == 50
    # 48 random bytes -> 64 URL-safe characters
    assert all(len(t) == 64 for t in tokens)
    assert all("." not in t for t in tokens)


@pytest.mark.parametrize(
    "ua,label",
    [
        (
            "Mozilla/5.0 (Windows NT 10.0) AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0 Safari/537.36 Edg/120.0",
            "Edge",
        ),
        ("Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0", "Firefox"),
        ("Mozilla/5.0 (Macintosh) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36", "Chrome"),
        ("Mozilla/5.0 (Macintosh) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15", "Safari"),
        ("curl/8.4.0", "Browser"),
        (None, "Unknown"),
        ("", "Unknown"),
    ],
)
def test_parse_user_agent(ua, label):
    assert parse_user_agent(ua) == label


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def test_hash_and_verify(credentials):
    hashed = credentials.hash_password("GoodPass1!")
    assert hashed != "GoodPass1!"
    assert credentials.verify_password("GoodPass1!", hashed)
    assert not credentials.verify_password("GoodPass2!", hashed)


def test_hashes_are_salted(credentials):
    assert credentials.hash_password("GoodPass1!") != credentials.hash_password("GoodPass1!")


def test_verify_never_raises_on_bad_hash(credentials):
    assert not credentials.verify_password("GoodPass1!", None)
    assert not credentials.verify_password("GoodPass1!", "")
    assert not credentials.verify_password("GoodPass1!", "not-a-bcrypt-hash")


def test_passwords_longer_than_72_bytes_hash(credentials):
    long_password = "Aa1!" * 30
    hashed = credentials.hash_password(long_password)
    assert credentials.verify_password(long_password, hashed)


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


def test_access_token_round_trip_claims(credentials):
    token = credentials.create_access_token(user_id=7, email="a@b.io", roles=["client"], session_id=3)
    claims = credentials.decode_access_token(token)
    assert claims["user_id"] == 7
    assert claims["sub"] == "7"
    assert claims["email"] == "a@b.io"
    assert claims["roles"] == ["client"]
    assert claims["sid"] == 3
    assert claims["type"] == "access"
    assert claims["exp"] > claims["iat"]


def test_access_token_without_session_has_no_sid(credentials):
    token = credentials.create_access_token(user_id=7, email="a@b.io", roles=[])
    assert "sid" not in credentials.decode_access_token(token)


def test_expired_token_is_distinct_from_invalid(credentials, settings):
    past = datetime.now(timezone.utc) - timedelta(minutes=5)
    token = jwt.encode(
        {"sub": "7", "user_id": 7, "email": "a@b.io", "roles": [], "type": "access", "iat": past, "exp": past},
        settings.secret_key,
        algorithm="HS256",
    )
    with pytest.raises(AuthError) as exc_info:
        credentials.decode_access_token(token)
    assert exc_info.value.code == ErrorCode.TOKEN_EXPIRED


def test_tampered_token_is_invalid(credentials):
    token = credentials.create_access_token(user_id=7, email="a@b.io", roles=["client"])
    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
    with pytest.raises(AuthError) as exc_info:
        credentials.decode_access_token(tampered)
    assert exc_info.value.code == ErrorCode.INVALID_TOKEN


def test_token_signed_with_other_key_is_invalid(credentials):
    future = datetime.now(timezone.utc) + timedelta(minutes=5)
    token = jwt.encode(
        {"sub": "7", "user_id": 7, "type": "access", "exp": future},
        "another-secret-key-of-sufficient-length-123",
        algorithm="HS256",
    )
    with pytest.raises(AuthError) as exc_info:
        credentials.decode_access_token(token)
    assert exc_info.value.code == ErrorCode.INVALID_TOKEN


def test_non_access_token_type_is_invalid(credentials, settings):
    future = datetime.now(timezone.utc) + timedelta(minutes=5)
    token = jwt.encode(
        {"sub": "7", "user_id": 7, "type": "refresh", "exp": future},
        settings.secret_key,
        algorithm="HS256",
    )
    with pytest.raises(AuthError) as exc_info:
        credentials.decode_access_token(token)
    assert exc_info.value.code == ErrorCode.INVALID_TOKEN


def test_garbage_token_is_invalid(credentials):
    with pytest.raises(AuthError) as exc_info:
        credentials.decode_access_token("not.a.jwt")
    assert exc_info.value.code == ErrorCode.INVALID_TOKEN

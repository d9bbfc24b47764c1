"""
auth/tokens.py -- Password hashing, JWT access tokens, refresh tokens and
related credential helpers.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with SECRET_KEY and
       carry user_id, email, role names, the session id (sid) and expiry.
       decode_access_token() raises AuthError with TOKEN_EXPIRED or
       INVALID_TOKEN so the access gate can tell clients when a silent
       refresh-and-retry is worth attempting.

  Passwords: bcrypt used directly (no passlib wrapper). The work factor comes
       from Settings.bcrypt_rounds. _dummy_hash enables timing equalization in
       AuthService.login() so response time does not reveal whether an email
       is registered.

  Refresh tokens: secrets.token_urlsafe(48) -- 384 bits of entropy, opaque,
       never signed or structured. Their only property is unguessability;
       validity is decided purely by the session store.

Pure helpers (strength rules, duration parsing, user-agent labels) live at
module level. Everything that needs configuration hangs off Credentials,
which receives a Settings instance instead of reading global state.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import AuthError, ErrorCode
from core.config import Settings

logger = logging.getLogger("turnstile.auth")

_ALGORITHM = "HS256"

# bcrypt only reads the first 72 bytes of its input; recent bcrypt releases
# raise instead of truncating, so inputs are cut explicitly.
_BCRYPT_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password strength
# ---------------------------------------------------------------------------

MIN_PASSWORD_LENGTH = 8
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"\d")
_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARACTERS) + "]")


@dataclass
class PasswordCheck:
    valid: bool
    reasons: list[str] = field(default_factory=list)


def validate_password_strength(plain: str) -> PasswordCheck:
    """Check every strength rule and report all of the violated ones."""
    reasons: list[str] = []
    if len(plain) < MIN_PASSWORD_LENGTH:
        reasons.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if not _UPPER_RE.search(plain):
        reasons.append("Password must contain at least one uppercase letter.")
    if not _LOWER_RE.search(plain):
        reasons.append("Password must contain at least one lowercase letter.")
    if not _DIGIT_RE.search(plain):
        reasons.append("Password must contain at least one number.")
    if not _SPECIAL_RE.search(plain):
        reasons.append(f"Password must contain at least one special character ({SPECIAL_CHARACTERS}).")
    return PasswordCheck(valid=not reasons, reasons=reasons)


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# ---------------------------------------------------------------------------
# Refresh tokens and expiry arithmetic
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a URL-safe random token with 384 bits of entropy."""
    return secrets.token_urlsafe(48)


_DURATION_RE = re.compile(r"^(\d+)([mhd])$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


def parse_duration(duration: str) -> timedelta:
    """Parse "30m", "24h" or "7d" into a timedelta.

    Raises ValueError for anything else, including unknown units ("10s").
    """
    match = _DURATION_RE.match((duration or "").strip())
    if match is None:
        raise ValueError(f"Invalid duration {duration!r}. Use <number><m|h|d>, e.g. 15m, 24h, 7d.")
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def compute_expiry(duration: str, now: datetime | None = None) -> datetime:
    """Absolute UTC expiry timestamp for a duration measured from now."""
    start = now or datetime.now(timezone.utc)
    return start + parse_duration(duration)


# ---------------------------------------------------------------------------
# User-agent labels
# ---------------------------------------------------------------------------

# Order matters: Edge and Opera user agents also mention Chrome and Safari,
# and Chrome user agents mention Safari.
_BROWSER_MARKERS = (
    ("Edg", "Edge"),
    ("OPR", "Opera"),
    ("Firefox", "Firefox"),
    ("Chrome", "Chrome"),
    ("Safari", "Safari"),
)
_DEVICE_MARKERS = (
    ("iPhone", "iPhone"),
    ("Android", "Android"),
    ("Mobile", "Mobile"),
)


def parse_user_agent(user_agent: str | None) -> str:
    """Reduce a User-Agent header to a coarse browser/device label."""
    if not user_agent:
        return "Unknown"
    for marker, label in _BROWSER_MARKERS:
        if marker in user_agent:
            return label
    for marker, label in _DEVICE_MARKERS:
        if marker in user_agent:
            return label
    return "Browser"


# ---------------------------------------------------------------------------
# Credentials -- configured hashing and JWT signing
# ---------------------------------------------------------------------------


class Credentials:
    """Password hashing and access-token signing bound to one Settings.

    Usage:
        credentials = Credentials(settings)
        hashed = credentials.hash_password("GoodPass1!")
        token = credentials.create_access_token(user_id=1, email="a@b.io", roles=["client"])
        claims = credentials.decode_access_token(token)
    """

    def __init__(self, settings: Settings) -> None:
        self._secret_key = settings.secret_key
        self._rounds = settings.bcrypt_rounds
        self.access_token_ttl = settings.access_token_ttl
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash_password(secrets.token_hex(16))

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, plain: str) -> str:
        """Return a salted bcrypt hash at the configured work factor."""
        secret = plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]
        return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self._rounds)).decode("utf-8")

    def verify_password(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext matches the hash. Never raises on mismatch."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    def burn_password_check(self, plain: str) -> None:
        """Run one bcrypt comparison against a throwaway hash.

        Called when the account does not exist so the unknown-email path
        costs the same as a wrong password.
        """
        self.verify_password(plain, self._dummy_hash)

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(
        self,
        user_id: int,
        email: str,
        roles: list[str],
        session_id: int | None = None,
        ttl: str | None = None,
    ) -> str:
        """Encode a signed JWT carrying identity, role names and expiry."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "user_id": user_id,
            "email": email,
            "roles": list(roles),
            "type": "access",
            "iat": now,
            "exp": compute_expiry(ttl or self.access_token_ttl, now=now),
        }
        if session_id is not None:
            payload["sid"] = session_id
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def decode_access_token(self, token: str) -> dict:
        """Verify signature and expiry and return the claims.

        Raises AuthError(TOKEN_EXPIRED) for a well-signed token past its exp,
        AuthError(INVALID_TOKEN) for anything else (bad signature, malformed,
        wrong token type, missing claims).
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise AuthError(ErrorCode.TOKEN_EXPIRED) from exc
        except JWTError as exc:
            raise AuthError(ErrorCode.INVALID_TOKEN) from exc
        if payload.get("type") != "access" or not isinstance(payload.get("user_id"), int):
            raise AuthError(ErrorCode.INVALID_TOKEN)
        return payload

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Stores map persistence rows into these records at their
boundary (see the _row_to_* mappers), so AuthService and the API layer never
see a database row shape.

Timestamps are ISO 8601 UTC strings, exactly as stored.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Role:
    """A catalog role. name is always lowercase and unique."""

    name: str
    id: int | None = None
    description: str | None = None
    created_at: str | None = None


@dataclass
class User:
    """An account.

    email is stored lowercase; lookups lowercase their input first.
    password_hash is the bcrypt hash, never the plaintext.
    is_active=False covers both "pending approval" and "deactivated by an admin".
    is_locked blocks authentication independently of is_active.

    roles is only populated by the *_with_roles store queries; plain lookups
    leave it empty.
    """

    email: str
    id: int | None = None
    password_hash: str | None = None
    name: str | None = None
    is_active: bool = False
    is_locked: bool = False
    failed_attempts: int = 0
    created_at: str | None = None
    roles: list[Role] = field(default_factory=list)

    @property
    def role_names(self) -> list[str]:
        return [r.name for r in self.roles]


@dataclass
class SessionOwner:
    """The owning-user fields a session validity check needs."""

    id: int
    email: str
    name: str | None
    is_active: bool
    is_locked: bool


@dataclass
class Session:
    """One authenticated device/client, bound to a single refresh token.

    Sessions are never physically deleted by the session lifecycle: logout,
    bulk logout and the expiry sweep only set is_active=False.
    """

    user_id: int
    refresh_token: str
    expires_at: str
    id: int | None = None
    user_agent: str | None = None
    ip: str | None = None
    created_at: str | None = None
    last_activity_at: str | None = None
    is_active: bool = True
    owner: SessionOwner | None = None


@dataclass
class SessionStats:
    active_sessions: int
    total_sessions: int


@dataclass
class UserPage:
    users: list[User]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass
class ClientContext:
    """Where a login or registration came from."""

    user_agent: str | None = None
    ip: str | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: str  # access token TTL as configured, e.g. "15m"
    token_type: str = "bearer"


@dataclass
class AuthResult:
    user: User
    tokens: TokenPair
    session_id: int | None = None


@dataclass
class Principal:
    """The caller behind a verified access token.

    user is re-loaded from the store on every request; session_id comes from
    the token's sid claim and is None for tokens minted without one.
    """

    user: User
    session_id: int | None = None


class Outcome(str, Enum):
    """Result of an operation whose effect is best-effort.

    confirmed -- the store reported the change.
    noop      -- nothing needed doing (e.g. logout without a token).
    unknown   -- the store failed; the caller proceeds regardless.
    """

    confirmed = "confirmed"
    noop = "noop"
    unknown = "unknown"

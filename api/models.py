"""
API request and response models for the Turnstile REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two
through the from_domain() factories.

Every response body is one of two envelopes:
  SuccessResponse  {success: true,  message, data, timestamp}
  ErrorResponse    {success: false, message, code, timestamp, errors?}

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Role, Session, SessionStats, TokenPair, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROLE_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_-]{1,49}$"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class SuccessResponse(BaseModel):
    """Envelope for every 2xx response."""

    success: bool = True
    message: str
    data: Any = None
    timestamp: str = Field(default_factory=_now_iso)


class FieldError(BaseModel):
    """One violated rule in a VALIDATION_ERROR or PASSWORD_WEAK response."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    value: Any = None


class ErrorResponse(BaseModel):
    """Envelope for every 4xx/5xx response. errors is omitted when empty."""

    success: bool = False
    message: str
    code: str
    timestamp: str = Field(default_factory=_now_iso)
    errors: Optional[list[FieldError]] = None


# ---------------------------------------------------------------------------
# Request models -- auth
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Email format and password strength are business rules checked by
    AuthService (EMAIL_INVALID, PASSWORD_WEAK), not here. AuthService also
    trims email and name. The password is hashed exactly as sent, the same
    way login reads it.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=128)


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = Field(default=None, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Request models -- users and roles
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/profile. Only the name is self-editable."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100)


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{user_id}.

    Owners may change name only; is_active and is_locked require admin.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    is_active: Optional[bool] = None
    is_locked: Optional[bool] = None


class RoleAssignment(BaseModel):
    role_id: int = Field(ge=1)


class ApproveRequest(BaseModel):
    """Request body for PATCH /api/v1/users/{user_id}/approve.

    Without role_id the approved account receives the default client role.
    """

    role_id: Optional[int] = Field(default=None, ge=1)


class ActiveToggle(BaseModel):
    is_active: bool


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(pattern=ROLE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=255)


class RolePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, pattern=ROLE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_domain(cls, role: Role) -> "RoleResponse":
        return cls(id=role.id, name=role.name, description=role.description, created_at=role.created_at)


class UserResponse(BaseModel):
    """Public view of a User. The password hash never leaves the store layer."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str]
    is_active: bool
    is_locked: bool
    failed_attempts: int
    created_at: Optional[str]
    roles: list[RoleResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        """Factory Method -- the field mapping lives beside the output model."""
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            is_active=user.is_active,
            is_locked=user.is_locked,
            failed_attempts=user.failed_attempts,
            created_at=user.created_at,
            roles=[RoleResponse.from_domain(r) for r in user.roles],
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: str

    @classmethod
    def from_domain(cls, tokens: TokenPair) -> "TokenResponse":
        return cls(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            expires_in=tokens.expires_in,
        )


class SessionResponse(BaseModel):
    """One signed-in device. The refresh token itself is never listed."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_agent: Optional[str]
    ip: Optional[str]
    created_at: str
    expires_at: str
    last_activity_at: Optional[str]
    is_current: bool = False

    @classmethod
    def from_domain(cls, session: Session, current_session_id: Optional[int] = None) -> "SessionResponse":
        return cls(
            id=session.id,
            user_agent=session.user_agent,
            ip=session.ip,
            created_at=session.created_at,
            expires_at=session.expires_at,
            last_activity_at=session.last_activity_at,
            is_current=session.id == current_session_id,
        )


class SessionStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_sessions: int
    total_sessions: int

    @classmethod
    def from_domain(cls, stats: SessionStats) -> "SessionStatsResponse":
        return cls(active_sessions=stats.active_sessions, total_sessions=stats.total_sessions)


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    pages: int


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

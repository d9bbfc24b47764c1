"""
api/routes/v1/auth.py -- Sign-up, sign-in and session lifecycle endpoints.

Routes:
  POST   /api/v1/auth/register              -- create pending account; 201 + tokens
  POST   /api/v1/auth/login                 -- password login; tokens
  POST   /api/v1/auth/refresh               -- rotate refresh token; tokens
  POST   /api/v1/auth/logout                -- close session; always 200
  POST   /api/v1/auth/logout-all            -- close every other session (requires auth)
  POST   /api/v1/auth/change-password       -- requires auth
  GET    /api/v1/auth/me                    -- profile + session stats (requires auth)
  POST   /api/v1/auth/verify                -- token check (requires auth)
  GET    /api/v1/auth/sessions              -- own active sessions (requires auth)
  DELETE /api/v1/auth/sessions/{session_id} -- close one own session (requires auth)

Security:
  register and login are rate-limited per IP (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- never inline the
  lookup + verify_password() pair here.
  Cache-Control: no-store on every response that carries tokens.
  The refresh token travels in the request body only, never in a header.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import credential_rate_limit, limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    SessionStatsResponse,
    SuccessResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_principal
from auth.errors import AuthError, ErrorCode
from auth.models import AuthResult, ClientContext, Principal
from auth.service import AuthService

logger = logging.getLogger("turnstile.api")

router = APIRouter()


def client_context(request: Request) -> ClientContext:
    return ClientContext(
        user_agent=request.headers.get("User-Agent"),
        ip=request.client.host if request.client else None,
    )


def _auth_payload(result: AuthResult) -> dict:
    return {
        "user": UserResponse.from_domain(result.user),
        "tokens": TokenResponse.from_domain(result.tokens),
    }


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=SuccessResponse, status_code=201)
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Create an account pending administrator approval.

    The response carries tokens, but the account stays inactive: protected
    routes answer ACCOUNT_DISABLED until an admin approves it.
    """
    result = service.register(body.email, body.password, body.name, client_context(request))
    response.headers["Cache-Control"] = "no-store"
    return SuccessResponse(
        message="Registration successful. The account is pending administrator approval.",
        data=_auth_payload(result),
    )


@limiter.limit(credential_rate_limit)
@router.post("/auth/login", response_model=SuccessResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Authenticate with email and password and open a new session.

    Unknown email and wrong password return the same INVALID_CREDENTIALS.
    """
    result = service.login(body.email, body.password, client_context(request))
    response.headers["Cache-Control"] = "no-store"
    return SuccessResponse(message="Login successful.", data=_auth_payload(result))


@router.post("/auth/refresh", response_model=SuccessResponse)
def refresh(
    response: Response,
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Exchange a refresh token for a new token pair. The old token dies here."""
    result = service.refresh_tokens(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return SuccessResponse(message="Tokens refreshed.", data=_auth_payload(result))


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(
    body: Optional[LogoutRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Close the session behind the given refresh token.

    Always succeeds. Access tokens already issued stay valid until they expire.
    """
    outcome = service.logout(body.refresh_token if body else None)
    logger.info("Logout (%s)", outcome.value)
    return SuccessResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=SuccessResponse)
def logout_all(
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Close every session of the caller except the one behind this token."""
    count = service.logout_all_sessions(principal.user.id, except_session_id=principal.session_id)
    return SuccessResponse(message="All other sessions were closed.", data={"invalidated_sessions": count})


@router.post("/auth/change-password", response_model=SuccessResponse)
def change_password(
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    service.change_password(principal.user.id, body.current_password, body.new_password)
    return SuccessResponse(message="Password changed.")


@router.get("/auth/me", response_model=SuccessResponse)
def me(
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Return the caller's profile and session counts."""
    stats = service.sessions.stats(principal.user.id)
    return SuccessResponse(
        message="Profile loaded.",
        data={
            "user": UserResponse.from_domain(principal.user),
            "session_stats": SessionStatsResponse.from_domain(stats),
        },
    )


@router.post("/auth/verify", response_model=SuccessResponse)
def verify(principal: Principal = Depends(get_current_principal)) -> SuccessResponse:
    """Reaching this handler means the access gate accepted the token."""
    return SuccessResponse(
        message="Token is valid.",
        data={"valid": True, "user": UserResponse.from_domain(principal.user)},
    )


@router.get("/auth/sessions", response_model=SuccessResponse)
def list_own_sessions(
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    sessions = service.sessions.list_active(principal.user.id)
    return SuccessResponse(
        message="Active sessions loaded.",
        data={"sessions": [SessionResponse.from_domain(s, principal.session_id) for s in sessions]},
    )


@router.delete("/auth/sessions/{session_id}", response_model=SuccessResponse)
def invalidate_own_session(
    session_id: int,
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    """Close one of the caller's sessions. Other users' sessions are SESSION_NOT_FOUND."""
    if not service.sessions.invalidate(session_id, user_id=principal.user.id):
        raise AuthError(ErrorCode.SESSION_NOT_FOUND)
    return SuccessResponse(message="Session closed.")

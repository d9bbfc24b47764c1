"""
api/routes/v1/sessions.py -- Session management for the signed-in user.

Routes:
  GET    /api/v1/sessions               -- own active sessions
  GET    /api/v1/sessions/stats         -- own active/total counts
  DELETE /api/v1/sessions/all           -- close every other own session
  DELETE /api/v1/sessions/cleanup       -- sweep expired sessions (admin)
  DELETE /api/v1/sessions/{session_id}  -- close one own session

/all and /cleanup are declared before /{session_id}; otherwise the router
would try to parse "all" as a session id.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import SessionResponse, SessionStatsResponse, SuccessResponse
from auth.dependencies import get_auth_service, get_current_principal, require_admin
from auth.errors import AuthError, ErrorCode
from auth.models import Principal
from auth.service import AuthService

router = APIRouter()


@router.get("/sessions", response_model=SuccessResponse)
def list_sessions(
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    sessions = service.sessions.list_active(principal.user.id)
    return SuccessResponse(
        message="Active sessions loaded.",
        data={"sessions": [SessionResponse.from_domain(s, principal.session_id) for s in sessions]},
    )


@router.get("/sessions/stats", response_model=SuccessResponse)
def session_stats(
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    stats = service.sessions.stats(principal.user.id)
    return SuccessResponse(message="Session stats loaded.", data={"stats": SessionStatsResponse.from_domain(stats)})


@router.delete("/sessions/all", response_model=SuccessResponse)
def invalidate_all_sessions(
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    count = service.logout_all_sessions(principal.user.id, except_session_id=principal.session_id)
    return SuccessResponse(message="All other sessions were closed.", data={"invalidated_sessions": count})


@router.delete("/sessions/cleanup", response_model=SuccessResponse)
def cleanup_expired_sessions(
    _: Principal = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    count = service.clean_expired_sessions()
    return SuccessResponse(message=f"{count} expired sessions cleaned up.", data={"cleaned_sessions": count})


@router.delete("/sessions/{session_id}", response_model=SuccessResponse)
def invalidate_session(
    session_id: int,
    principal: Principal = Depends(get_current_principal),
    service: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    if not service.sessions.invalidate(session_id, user_id=principal.user.id):
        raise AuthError(ErrorCode.SESSION_NOT_FOUND)
    return SuccessResponse(message="Session closed.")

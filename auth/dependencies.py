"""
auth/dependencies.py -- FastAPI Depends() helpers for the access gate.

Every protected route resolves the caller through get_current_principal():

  1. Authorization: Bearer <token> header, else TOKEN_REQUIRED.
  2. AuthService.authenticate_access_token() -- TOKEN_EXPIRED and
     INVALID_TOKEN stay distinct so clients know when a silent refresh is
     worth trying; ACCOUNT_DISABLED / ACCOUNT_LOCKED reflect the account as it
     is now, not as it was when the token was issued.

Authorization layers on top:
  require_role(*names)         -- caller holds any of the roles (case-insensitive)
  require_admin                -- require_role("admin")
  require_ownership_or_admin   -- admin, or the {user_id} path param is the caller

All failures raise AuthError; api/main.py renders the envelope.

Layer rule: no imports from api/. auth/dependencies.py may import from fastapi
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.errors import AuthError, ErrorCode
from auth.models import Principal, User
from auth.roles import ADMIN_ROLE
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_principal(request: Request) -> Principal:
    """Require a valid access token. Raises AuthError otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthError(ErrorCode.TOKEN_REQUIRED)
    return get_auth_service(request).authenticate_access_token(token)


def get_current_user(principal: Principal = Depends(get_current_principal)) -> User:
    return principal.user


def has_any_role(user: User, names: tuple[str, ...] | list[str]) -> bool:
    held = {name.lower() for name in user.role_names}
    return any(name.lower() in held for name in names)


def is_admin(user: User) -> bool:
    return has_any_role(user, [ADMIN_ROLE])


def require_role(*names: str):
    """Build a dependency that passes if the caller holds any of `names`.

    Usage:
        @router.get("/staff", dependencies=[Depends(require_role("admin", "employee"))])
    """

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_any_role(principal.user, names):
            raise AuthError(ErrorCode.INSUFFICIENT_PERMISSIONS)
        return principal

    return dependency


require_admin = require_role(ADMIN_ROLE)


def require_ownership_or_admin(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
    """Pass for admins, or when the {user_id} path parameter is the caller.

    A malformed user_id is treated as someone else's id, so non-admins get
    ACCESS_DENIED rather than a validation error.
    """
    if is_admin(principal.user):
        return principal
    try:
        owner_id = int(request.path_params.get("user_id", ""))
    except ValueError:
        owner_id = None
    if owner_id != principal.user.id:
        raise AuthError(ErrorCode.ACCESS_DENIED)
    return principal

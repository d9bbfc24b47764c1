"""
api/routes/v1/users.py -- User administration and self-service profile endpoints.

Routes:
  GET    /api/v1/users                       -- paginated list (admin)
  GET    /api/v1/users/all/with-roles        -- every user with roles (admin)
  GET    /api/v1/users/profile               -- own profile (auth)
  PUT    /api/v1/users/profile               -- rename self (auth)
  GET    /api/v1/users/{user_id}             -- owner or admin
  PUT    /api/v1/users/{user_id}             -- owner: name; admin: name/is_active/is_locked
  DELETE /api/v1/users/{user_id}             -- deactivate (admin, not self)
  GET    /api/v1/users/{user_id}/roles       -- owner or admin
  POST   /api/v1/users/{user_id}/roles       -- assign role (admin)
  DELETE /api/v1/users/{user_id}/roles/{id}  -- remove role (admin)
  PATCH  /api/v1/users/{user_id}/approve     -- activate + replace roles (admin)
  PATCH  /api/v1/users/{user_id}/role        -- replace roles (admin)
  PATCH  /api/v1/users/{user_id}/toggle-active -- (admin, not self)
  DELETE /api/v1/users/{user_id}/permanent   -- hard delete (admin, not self)

Fixed paths (profile, all/with-roles) are declared before /{user_id} so the
router matches them first.

An admin can never deactivate, lock or delete their own account through these
routes.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    ActiveToggle,
    ApproveRequest,
    Pagination,
    ProfileUpdate,
    RoleAssignment,
    RoleResponse,
    SuccessResponse,
    UserResponse,
    UserUpdate,
)
from auth.dependencies import (
    get_current_principal,
    is_admin,
    require_admin,
    require_ownership_or_admin,
)
from auth.errors import AuthError, ErrorCode
from auth.models import Principal, Role, User
from auth.roles import APPROVED_ROLE, RoleStore
from auth.users import UserStore

router = APIRouter()


def _users(request: Request) -> UserStore:
    return request.app.state.user_store


def _roles(request: Request) -> RoleStore:
    return request.app.state.role_store


def _existing_user(store: UserStore, user_id: int) -> User:
    user = store.find_with_roles(user_id)
    if user is None:
        raise AuthError(ErrorCode.USER_NOT_FOUND)
    return user


def _existing_role(store: RoleStore, role_id: int) -> Role:
    role = store.find_by_id(role_id)
    if role is None:
        raise AuthError(ErrorCode.ROLE_NOT_FOUND)
    return role


def _not_self(principal: Principal, user_id: int) -> None:
    if principal.user.id == user_id:
        raise AuthError(ErrorCode.CANNOT_DEACTIVATE_SELF)


# ---------------------------------------------------------------------------
# Collection and self-service
# ---------------------------------------------------------------------------


@router.get("/users", response_model=SuccessResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str = Query(default="", max_length=100),
    include_inactive: bool = Query(default=False),
    _: Principal = Depends(require_admin),
) -> SuccessResponse:
    result = _users(request).list_users(page=page, limit=limit, search=search, include_inactive=include_inactive)
    return SuccessResponse(
        message="Users loaded.",
        data={
            "users": [UserResponse.from_domain(u) for u in result.users],
            "pagination": Pagination(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
        },
    )


@router.get("/users/all/with-roles", response_model=SuccessResponse)
def list_users_with_roles(request: Request, _: Principal = Depends(require_admin)) -> SuccessResponse:
    users = _users(request).list_with_roles()
    return SuccessResponse(message="Users loaded.", data={"users": [UserResponse.from_domain(u) for u in users]})


@router.get("/users/profile", response_model=SuccessResponse)
def get_profile(principal: Principal = Depends(get_current_principal)) -> SuccessResponse:
    return SuccessResponse(message="Profile loaded.", data={"user": UserResponse.from_domain(principal.user)})


@router.put("/users/profile", response_model=SuccessResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    store = _users(request)
    store.update_user(principal.user.id, name=body.name)
    return SuccessResponse(
        message="Profile updated.",
        data={"user": UserResponse.from_domain(store.find_with_roles(principal.user.id))},
    )


# ---------------------------------------------------------------------------
# Single user
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}", response_model=SuccessResponse)
def get_user(
    request: Request,
    user_id: int,
    _: Principal = Depends(require_ownership_or_admin),
) -> SuccessResponse:
    user = _existing_user(_users(request), user_id)
    return SuccessResponse(message="User loaded.", data={"user": UserResponse.from_domain(user)})


@router.put("/users/{user_id}", response_model=SuccessResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    principal: Principal = Depends(require_ownership_or_admin),
) -> SuccessResponse:
    """Owners may rename themselves. Account flags are admin-only."""
    store = _users(request)
    _existing_user(store, user_id)
    fields = body.model_dump(exclude_none=True)
    if {"is_active", "is_locked"} & set(fields):
        if not is_admin(principal.user):
            raise AuthError(ErrorCode.INSUFFICIENT_PERMISSIONS)
        if user_id == principal.user.id and (fields.get("is_active") is False or fields.get("is_locked")):
            raise AuthError(ErrorCode.CANNOT_DEACTIVATE_SELF)
    store.update_user(user_id, **fields)
    return SuccessResponse(
        message="User updated.",
        data={"user": UserResponse.from_domain(store.find_with_roles(user_id))},
    )


@router.delete("/users/{user_id}", response_model=SuccessResponse)
def deactivate_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_admin),
) -> SuccessResponse:
    """Soft delete: the account is kept but can no longer authenticate."""
    store = _users(request)
    _existing_user(store, user_id)
    _not_self(principal, user_id)
    store.deactivate_user(user_id)
    return SuccessResponse(message="User deactivated.")


@router.delete("/users/{user_id}/permanent", response_model=SuccessResponse)
def delete_user_permanently(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_admin),
) -> SuccessResponse:
    """Hard delete. Fails with USER_HAS_DEPENDENCIES if other data references the user."""
    store = _users(request)
    _existing_user(store, user_id)
    _not_self(principal, user_id)
    store.delete_user(user_id)
    return SuccessResponse(message="User permanently deleted.")


# ---------------------------------------------------------------------------
# Roles of a user
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/roles", response_model=SuccessResponse)
def get_user_roles(
    request: Request,
    user_id: int,
    _: Principal = Depends(require_ownership_or_admin),
) -> SuccessResponse:
    user = _existing_user(_users(request), user_id)
    return SuccessResponse(message="Roles loaded.", data={"roles": [RoleResponse.from_domain(r) for r in user.roles]})


@router.post("/users/{user_id}/roles", response_model=SuccessResponse)
def assign_role(
    request: Request,
    user_id: int,
    body: RoleAssignment,
    _: Principal = Depends(require_admin),
) -> SuccessResponse:
    store = _users(request)
    _existing_user(store, user_id)
    role = _existing_role(_roles(request), body.role_id)
    store.assign_role(user_id, role.id)
    return SuccessResponse(message=f"Role {role.name} assigned.")


@router.delete("/users/{user_id}/roles/{role_id}", response_model=SuccessResponse)
def remove_role(
    request: Request,
    user_id: int,
    role_id: int,
    _: Principal = Depends(require_admin),
) -> SuccessResponse:
    store = _users(request)
    _existing_user(store, user_id)
    role = _existing_role(_roles(request), role_id)
    store.remove_role(user_id, role.id)
    return SuccessResponse(message=f"Role {role.name} removed.")


@router.patch("/users/{user_id}/approve", response_model=SuccessResponse)
def approve_user(
    request: Request,
    user_id: int,
    body: Optional[ApproveRequest] = None,
    _: Principal = Depends(require_admin),
) -> SuccessResponse:
    """Activate a pending account and make the given role (default: client) its only role."""
    store = _users(request)
    roles = _roles(request)
    _existing_user(store, user_id)
    if body is not None and body.role_id is not None:
        role = _existing_role(roles, body.role_id)
    else:
        role = roles.find_by_name(APPROVED_ROLE)
        if role is None:
            raise AuthError(ErrorCode.ROLE_NOT_FOUND)
    store.approve(user_id, role.id)
    return SuccessResponse(
        message="User approved.",
        data={"user": UserResponse.from_domain(store.find_with_roles(user_id))},
    )


@router.patch("/users/{user_id}/role", response_model=SuccessResponse)
def change_role(
    request: Request,
    user_id: int,
    body: RoleAssignment,
    _: Principal = Depends(require_admin),
) -> SuccessResponse:
    """Replace every role of the user with one role, atomically."""
    store = _users(request)
    _existing_user(store, user_id)
    role = _existing_role(_roles(request), body.role_id)
    store.replace_roles(user_id, role.id)
    return SuccessResponse(
        message=f"Role changed to {role.name}.",
        data={"user": UserResponse.from_domain(store.find_with_roles(user_id))},
    )


@router.patch("/users/{user_id}/toggle-active", response_model=SuccessResponse)
def toggle_active(
    request: Request,
    user_id: int,
    body: ActiveToggle,
    principal: Principal = Depends(require_admin),
) -> SuccessResponse:
    store = _users(request)
    _existing_user(store, user_id)
    _not_self(principal, user_id)
    store.update_user(user_id, is_active=body.is_active)
    return SuccessResponse(
        message="User activated." if body.is_active else "User deactivated.",
        data={"user": UserResponse.from_domain(store.find_with_roles(user_id))},
    )

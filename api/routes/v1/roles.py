"""
api/routes/v1/roles.py -- Role catalog endpoints.

Routes:
  GET    /api/v1/roles                  -- list (any authenticated user)
  POST   /api/v1/roles                  -- create (admin)
  PATCH  /api/v1/roles/{role_id}        -- rename / re-describe (admin)
  DELETE /api/v1/roles/{role_id}        -- delete if unused (admin)
  GET    /api/v1/roles/{role_id}/users  -- holders of a role (admin)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import RoleCreate, RolePatch, RoleResponse, SuccessResponse, UserResponse
from auth.dependencies import get_current_principal, require_admin
from auth.errors import AuthError, ErrorCode
from auth.models import Principal
from auth.roles import RoleStore

router = APIRouter()


def _roles(request: Request) -> RoleStore:
    return request.app.state.role_store


@router.get("/roles", response_model=SuccessResponse)
def list_roles(request: Request, _: Principal = Depends(get_current_principal)) -> SuccessResponse:
    roles = _roles(request).list_all()
    return SuccessResponse(message="Roles loaded.", data={"roles": [RoleResponse.from_domain(r) for r in roles]})


@router.post("/roles", response_model=SuccessResponse, status_code=201)
def create_role(request: Request, body: RoleCreate, _: Principal = Depends(require_admin)) -> SuccessResponse:
    role = _roles(request).create(body.name, body.description)
    return SuccessResponse(message="Role created.", data={"role": RoleResponse.from_domain(role)})


@router.patch("/roles/{role_id}", response_model=SuccessResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RolePatch,
    _: Principal = Depends(require_admin),
) -> SuccessResponse:
    role = _roles(request).update(role_id, **body.model_dump(exclude_none=True))
    if role is None:
        raise AuthError(ErrorCode.ROLE_NOT_FOUND)
    return SuccessResponse(message="Role updated.", data={"role": RoleResponse.from_domain(role)})


@router.delete("/roles/{role_id}", response_model=SuccessResponse)
def delete_role(request: Request, role_id: int, _: Principal = Depends(require_admin)) -> SuccessResponse:
    store = _roles(request)
    if store.find_by_id(role_id) is None:
        raise AuthError(ErrorCode.ROLE_NOT_FOUND)
    store.delete(role_id)
    return SuccessResponse(message="Role deleted.")


@router.get("/roles/{role_id}/users", response_model=SuccessResponse)
def list_role_users(request: Request, role_id: int, _: Principal = Depends(require_admin)) -> SuccessResponse:
    store = _roles(request)
    if store.find_by_id(role_id) is None:
        raise AuthError(ErrorCode.ROLE_NOT_FOUND)
    users = store.list_users(role_id)
    return SuccessResponse(message="Role holders loaded.", data={"users": [UserResponse.from_domain(u) for u in users]})

"""
api/routes/v1/rbac.py -- Permission, role and role-assignment REST endpoints.

Every route requires a verified email plus the permission named in its
RouteRequirements, and answers 403 rbac_disabled when RBAC_ENABLED=false.

Routes:
  GET    /api/v1/permissions                 -- permissions:read   (flat list + grouped by resource)
  POST   /api/v1/permissions                 -- permissions:create
  GET    /api/v1/permissions/stats           -- permissions:read
  GET    /api/v1/roles                       -- roles:read
  POST   /api/v1/roles                       -- roles:create
  GET    /api/v1/roles/stats                 -- roles:read
  GET    /api/v1/roles/{id}                  -- roles:read
  PATCH  /api/v1/roles/{id}                  -- roles:update
  DELETE /api/v1/roles/{id}                  -- roles:delete (system roles refused)
  GET    /api/v1/users/{id}/roles            -- roles:read
  POST   /api/v1/users/{id}/roles            -- user-roles:assign
  DELETE /api/v1/users/{id}/roles/{role_id}  -- user-roles:remove
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AssignRolesRequest,
    PermissionCreate,
    PermissionListResponse,
    PermissionResponse,
    PermissionStatsResponse,
    RoleCreate,
    RoleResponse,
    RoleStatsResponse,
    RoleUpdate,
    UserRolesResponse,
)
from auth.dependencies import authorize, raise_for_failure, require_rbac_enabled
from auth.errors import ErrorCode, Failure
from auth.guard import AuthContext, RouteRequirements
from rbac.store import PermissionGraph, group_by_resource

logger = logging.getLogger("gatehouse.api")

router = APIRouter(dependencies=[Depends(require_rbac_enabled)])


def _requires(*permissions: str):
    return Depends(authorize(RouteRequirements(require_verified_email=True, permissions=permissions)))


def _graph(request: Request) -> PermissionGraph:
    return request.app.state.services.graph


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=PermissionListResponse)
def list_permissions(request: Request, ctx: AuthContext = _requires("permissions:read")) -> PermissionListResponse:
    perms = _graph(request).list_permissions()
    return PermissionListResponse(
        permissions=[PermissionResponse.from_permission(p) for p in perms],
        grouped={
            resource: [PermissionResponse.from_permission(p) for p in group]
            for resource, group in group_by_resource(perms).items()
        },
    )


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(
    request: Request,
    body: PermissionCreate,
    ctx: AuthContext = _requires("permissions:create"),
) -> PermissionResponse:
    perm = _graph(request).create_permission(body.name, body.description, resource=body.resource, action=body.action)
    if isinstance(perm, Failure):
        raise_for_failure(perm)
    logger.info("User %s created permission %s", ctx.user.id, perm.name)
    return PermissionResponse.from_permission(perm)


@router.get("/permissions/stats", response_model=PermissionStatsResponse)
def permission_stats(request: Request, ctx: AuthContext = _requires("permissions:read")) -> PermissionStatsResponse:
    stats = _graph(request).permission_statistics()
    return PermissionStatsResponse(total=stats.total, resources=stats.resources, by_resource=stats.by_resource)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, ctx: AuthContext = _requires("roles:read")) -> list[RoleResponse]:
    return [RoleResponse.from_role(r) for r in _graph(request).list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate, ctx: AuthContext = _requires("roles:create")) -> RoleResponse:
    role = _graph(request).create_role(
        body.name,
        body.description,
        body.permission_ids,
        is_system_role=body.is_system_role,
    )
    if isinstance(role, Failure):
        raise_for_failure(role)
    logger.info("User %s created role %s", ctx.user.id, role.name)
    return RoleResponse.from_role(role)


# Declared before /roles/{role_id} so "stats" is not parsed as an id.
@router.get("/roles/stats", response_model=RoleStatsResponse)
def role_stats(request: Request, ctx: AuthContext = _requires("roles:read")) -> RoleStatsResponse:
    stats = _graph(request).role_statistics()
    return RoleStatsResponse(total=stats.total, system=stats.system, custom=stats.custom)


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int, ctx: AuthContext = _requires("roles:read")) -> RoleResponse:
    role = _graph(request).get_role(role_id)
    if role is None:
        raise_for_failure(Failure(ErrorCode.not_found, "Role not found."))
    return RoleResponse.from_role(role)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    ctx: AuthContext = _requires("roles:update"),
) -> RoleResponse:
    role = _graph(request).update_role(
        role_id,
        name=body.name,
        description=body.description,
        permission_ids=body.permission_ids,
    )
    if isinstance(role, Failure):
        raise_for_failure(role)
    logger.info("User %s updated role %s", ctx.user.id, role_id)
    return RoleResponse.from_role(role)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(request: Request, role_id: int, ctx: AuthContext = _requires("roles:delete")) -> Response:
    failure = _graph(request).delete_role(role_id)
    if failure is not None:
        raise_for_failure(failure)
    logger.info("User %s deleted role %s", ctx.user.id, role_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User role assignment
# ---------------------------------------------------------------------------


def _user_roles_response(graph: PermissionGraph, user_id: int) -> UserRolesResponse:
    return UserRolesResponse(
        user_id=user_id,
        roles=[RoleResponse.from_role(r) for r in graph.user_roles(user_id)],
        permissions=sorted(graph.effective_permission_names(user_id)),
    )


@router.get("/users/{user_id}/roles", response_model=UserRolesResponse)
def get_user_roles(request: Request, user_id: int, ctx: AuthContext = _requires("roles:read")) -> UserRolesResponse:
    if request.app.state.services.users.get_by_id(user_id) is None:
        raise_for_failure(Failure(ErrorCode.not_found, "User not found."))
    return _user_roles_response(_graph(request), user_id)


@router.post("/users/{user_id}/roles", response_model=UserRolesResponse)
def assign_roles(
    request: Request,
    user_id: int,
    body: AssignRolesRequest,
    ctx: AuthContext = _requires("user-roles:assign"),
) -> UserRolesResponse:
    graph = _graph(request)
    failure = graph.assign_roles(user_id, body.role_ids)
    if failure is not None:
        raise_for_failure(failure)
    logger.info("User %s assigned roles %s to user %s", ctx.user.id, body.role_ids, user_id)
    return _user_roles_response(graph, user_id)


@router.delete("/users/{user_id}/roles/{role_id}", status_code=204)
def remove_user_role(
    request: Request,
    user_id: int,
    role_id: int,
    ctx: AuthContext = _requires("user-roles:remove"),
) -> Response:
    if not _graph(request).unassign_role(user_id, role_id):
        raise_for_failure(Failure(ErrorCode.not_found, "Role is not assigned to that user."))
    logger.info("User %s removed role %s from user %s", ctx.user.id, role_id, user_id)
    return Response(status_code=204)

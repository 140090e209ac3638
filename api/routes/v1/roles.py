"""
api/routes/v1/roles.py -- Role management endpoints.

Routes:
  POST   /api/v1/roles           -- create role (role_create)
  GET    /api/v1/roles           -- list roles (role_view)
  GET    /api/v1/roles/{id}      -- role detail (role_view)
  PUT    /api/v1/roles/{id}      -- rename / replace permissions (role_edit)
  DELETE /api/v1/roles/{id}      -- delete unassigned role (role_delete)

Permissions are referenced by name in request bodies and resolved through the
PermissionCache, so validating a role never touches the permission table
within the cache window. Empty permission lists are rejected by the request
model (422) before any store call.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import RoleCreate, RoleResponse, RoleUpdate
from auth.dependencies import require_permission
from auth.errors import BadRequestError, ConflictError, NotFoundError
from auth.models import User
from auth.store import RoleStore, UserStore
from cache.permissions import PermissionCache

logger = logging.getLogger("rolegate.api.roles")

router = APIRouter()


def _resolve_permission_ids(cache: PermissionCache, names: list[str]) -> list[int]:
    """Map permission names to ids. Unknown names are a 400 listing every offender."""
    ids: list[int] = []
    unknown: list[str] = []
    for name in names:
        permission = cache.get_permission_by_name(name)
        if permission is None:
            unknown.append(name)
        else:
            ids.append(permission.id)
    if unknown:
        raise BadRequestError("Unknown permission(s).", detail=", ".join(unknown))
    return ids


def _get_role_or_404(role_store: RoleStore, role_id: int):
    role = role_store.get_role(role_id)
    if role is None:
        raise NotFoundError(f"Role not found with id of {role_id}")
    return role


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    current_user: User = Depends(require_permission("role_create")),
) -> RoleResponse:
    role_store: RoleStore = request.app.state.role_store
    cache: PermissionCache = request.app.state.permission_cache

    if role_store.get_by_name(body.name) is not None:
        raise ConflictError("Role with this name already exists")
    permission_ids = _resolve_permission_ids(cache, body.permissions)
    try:
        role_id = role_store.create_role(body.name, permission_ids)
    except IntegrityError as exc:
        raise ConflictError("Role with this name already exists") from exc

    logger.info("Role %s (%s) created by user %s", role_id, body.name, current_user.id)
    return RoleResponse.from_role(_get_role_or_404(role_store, role_id))


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(
    request: Request,
    current_user: User = Depends(require_permission("role_view")),
) -> list[RoleResponse]:
    role_store: RoleStore = request.app.state.role_store
    return [RoleResponse.from_role(r) for r in role_store.list_roles()]


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(
    request: Request,
    role_id: int,
    current_user: User = Depends(require_permission("role_view")),
) -> RoleResponse:
    role_store: RoleStore = request.app.state.role_store
    return RoleResponse.from_role(_get_role_or_404(role_store, role_id))


@router.put("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    current_user: User = Depends(require_permission("role_edit")),
) -> RoleResponse:
    role_store: RoleStore = request.app.state.role_store
    cache: PermissionCache = request.app.state.permission_cache

    _get_role_or_404(role_store, role_id)
    existing = role_store.get_by_name(body.name)
    if existing is not None and existing.id != role_id:
        raise ConflictError("Role with this name already exists")

    permission_ids = None
    if body.permissions is not None:
        permission_ids = _resolve_permission_ids(cache, body.permissions)
    try:
        updated = role_store.update_role(role_id, name=body.name, permission_ids=permission_ids)
    except IntegrityError as exc:
        raise ConflictError("Role with this name already exists") from exc
    if not updated:
        raise NotFoundError(f"Role not found with id of {role_id}")

    logger.info("Role %s updated by user %s", role_id, current_user.id)
    return RoleResponse.from_role(_get_role_or_404(role_store, role_id))


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    request: Request,
    role_id: int,
    current_user: User = Depends(require_permission("role_delete")),
) -> Response:
    """Delete a role. Refused while any user still references it."""
    role_store: RoleStore = request.app.state.role_store
    user_store: UserStore = request.app.state.user_store

    _get_role_or_404(role_store, role_id)
    assigned = user_store.count_by_role(role_id)
    if assigned > 0:
        noun = "user" if assigned == 1 else "users"
        raise BadRequestError(f"Cannot delete role: It is currently assigned to {assigned} {noun}.")

    role_store.delete_role(role_id)
    logger.info("Role %s deleted by user %s", role_id, current_user.id)
    return Response(status_code=204)

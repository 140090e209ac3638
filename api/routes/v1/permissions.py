"""
api/routes/v1/permissions.py -- Permission catalog endpoints.

Routes:
  GET    /api/v1/permissions        -- full catalog, served from PermissionCache (role_view)
  DELETE /api/v1/permissions/cache  -- drop the cached catalog (elevated users only)

The catalog is seed data (seed.py). Clearing the cache is the operator's way
to make a freshly seeded permission visible before the cache window elapses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response

from api.models import PermissionListResponse, PermissionResponse
from auth.dependencies import require_admin, require_permission
from auth.models import User
from cache.permissions import PermissionCache

logger = logging.getLogger("rolegate.api.permissions")

router = APIRouter()


@router.get("/permissions", response_model=PermissionListResponse)
def list_permissions(
    request: Request,
    current_user: User = Depends(require_permission("role_view")),
) -> PermissionListResponse:
    cache: PermissionCache = request.app.state.permission_cache
    permissions = cache.get_all_permissions()
    return PermissionListResponse(
        count=len(permissions),
        permissions=[PermissionResponse.from_permission(p) for p in permissions],
    )


@router.delete("/permissions/cache", status_code=204)
def clear_permission_cache(
    request: Request,
    current_user: User = Depends(require_admin),
) -> Response:
    cache: PermissionCache = request.app.state.permission_cache
    cache.clear()
    logger.info("Permission cache cleared by user %s", current_user.id)
    return Response(status_code=204)

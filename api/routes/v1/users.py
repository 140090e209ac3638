"""
api/routes/v1/users.py -- Profile edits, role assignment and suspension.

Routes:
  PUT   /api/v1/users/edit                -- caller edits own name (auth) or role (role_edit)
  PUT   /api/v1/users/set-new-role        -- assign a role to any user (role_edit)
  PATCH /api/v1/users/{id}/suspension     -- suspend / reinstate (user_edit)

Changes take effect on the target's next request: the authentication
dependency re-reads the user, role and permissions every time.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import SetUserRole, SuspensionUpdate, UserEdit, UserSummary
from auth.dependencies import get_current_user, require_permission
from auth.errors import BadRequestError, NotFoundError, ServerError
from auth.models import User
from auth.permissions import check_permission
from auth.store import RoleStore, UserStore
from core.config import get_settings

logger = logging.getLogger("rolegate.api.users")

router = APIRouter()


def _require_role(role_store: RoleStore, role_id: int) -> None:
    if role_store.get_role(role_id) is None:
        raise NotFoundError("Role not found.")


def _reload(user_store: UserStore, user_id: int) -> UserSummary:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise ServerError("User not found after write.")
    return UserSummary.from_user(user)


@router.put("/users/edit", response_model=UserSummary)
def edit_user(
    request: Request,
    body: UserEdit,
    current_user: User = Depends(get_current_user),
) -> UserSummary:
    user_store: UserStore = request.app.state.user_store
    role_store: RoleStore = request.app.state.role_store

    updates: dict = {}
    if body.name is not None:
        updates["name"] = body.name
    if body.role is not None:
        # Self role changes need role_edit, same as /users/set-new-role.
        check_permission(current_user, "role_edit", get_settings().elevated_user_type)
        _require_role(role_store, body.role)
        updates["role_id"] = body.role
    if not updates:
        raise BadRequestError("Name or role is missing")

    if not user_store.update_user(current_user.id, **updates):
        raise NotFoundError("User not found.")
    return _reload(user_store, current_user.id)


@router.put("/users/set-new-role", response_model=UserSummary)
def set_user_role(
    request: Request,
    body: SetUserRole,
    current_user: User = Depends(require_permission("role_edit")),
) -> UserSummary:
    user_store: UserStore = request.app.state.user_store
    role_store: RoleStore = request.app.state.role_store

    _require_role(role_store, body.role)
    if not user_store.update_user(body.user_id, role_id=body.role):
        raise NotFoundError("User not found.")
    logger.info("User %s assigned role %s by user %s", body.user_id, body.role, current_user.id)
    return _reload(user_store, body.user_id)


@router.patch("/users/{user_id}/suspension", response_model=UserSummary)
def set_suspension(
    request: Request,
    user_id: int,
    body: SuspensionUpdate,
    current_user: User = Depends(require_permission("user_edit")),
) -> UserSummary:
    """Suspend or reinstate a user. Callers cannot suspend themselves."""
    user_store: UserStore = request.app.state.user_store

    if body.suspended and user_id == current_user.id:
        raise BadRequestError("You cannot suspend your own account.")
    if not user_store.update_user(user_id, suspended=body.suspended):
        raise NotFoundError("User not found.")
    logger.info("User %s suspended=%s by user %s", user_id, body.suspended, current_user.id)
    return _reload(user_store, user_id)

"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

get_current_user() is the authentication pipeline. Each stage short-circuits
with a typed AuthenticationError; nothing is attached to the request unless
every stage passes:
  1. Authorization: Bearer <token> header present.
  2. Signature and expiry verified by TokenService.
  3. User loaded by id; role and its permissions expanded once.
  4. Suspended accounts rejected with a distinct code and message.
  5. Resolved User attached to request.state.user and returned.

require_permission(name) builds a guard that runs get_current_user() and then
the pure decision in auth.permissions. FastAPI caches get_current_user() per
request, so stacking several guards on one route authenticates once.

require_admin() admits only the configured elevated user type.

Layer rule: no imports from api/ or cache/.
  This module may import from fastapi because it is part of the dependency
  injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import AccountSuspendedError, AuthenticationError, ForbiddenError
from auth.models import User
from auth.permissions import check_permission
from auth.store import RoleStore, UserStore
from auth.tokens import BEARER_PREFIX, TokenService
from core.config import get_settings


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    return token or None


def get_current_user(request: Request) -> User:
    """Resolve the caller or raise AuthenticationError (401).

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError()

    token_service: TokenService = request.app.state.token_service
    claims = token_service.verify_access(token)

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims["user_id"])
    if user is None:
        raise AuthenticationError("User not found.")
    if user.role_id is not None:
        role_store: RoleStore = request.app.state.role_store
        user.role = role_store.get_role(user.role_id)

    if user.suspended:
        raise AccountSuspendedError()

    request.state.user = user
    return user


def require_permission(permission_name: str) -> Callable[..., User]:
    """Build a dependency that admits the caller only if they hold permission_name.

    Use as a FastAPI dependency:
        @router.put("/roles/{role_id}")
        def route(user: User = Depends(require_permission("role_edit"))): ...
    """

    def _guard(user: User = Depends(get_current_user)) -> User:
        check_permission(user, permission_name, get_settings().elevated_user_type)
        return user

    _guard.__name__ = f"require_{permission_name}"
    return _guard


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Admit only the elevated user type (403 otherwise)."""
    if user.type != get_settings().elevated_user_type:
        raise ForbiddenError("Admin access required.")
    return user

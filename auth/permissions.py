"""
auth/permissions.py -- The authorization decision.

Pure functions over an already-resolved User: the authentication dependency
expands role and permissions once per request, so nothing here does I/O.
The cost is that permission edits become visible to a caller only on their
next request.

Decision order:
  1. user.type == elevated type  -> allowed, role ignored
  2. no role                     -> denied
  3. otherwise                   -> allowed iff the name is in the role's set
"""

from __future__ import annotations

from auth.errors import ForbiddenError
from auth.models import User


def is_permitted(user: User, required: str, elevated_type: str) -> bool:
    if user.type == elevated_type:
        return True
    if user.role is None:
        return False
    return required in user.role.permission_names


def check_permission(user: User, required: str, elevated_type: str) -> None:
    """Raise ForbiddenError unless is_permitted()."""
    if not is_permitted(user, required, elevated_type):
        raise ForbiddenError()

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Stores build these from rows;
routes map them onto the Pydantic response models in api/models.py.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Permission:
    """An atomic named capability, e.g. "role_edit".

    Permissions are seed data: inserted once per name by seed.py and read
    everywhere else.
    """

    name: str
    label: str
    module: str  # owning module tag, e.g. "role", "user"
    id: int | None = None
    created_at: str | None = None


@dataclass
class Role:
    """A named bundle of permissions.

    permissions is always fully expanded when the role comes out of
    RoleStore.get_role(); the list is never empty for a persisted role.
    """

    name: str
    permissions: list[Permission] = field(default_factory=list)
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def permission_names(self) -> frozenset[str]:
        return frozenset(p.name for p in self.permissions)


@dataclass
class User:
    """An account holder authenticated by email and password.

    email is stored lowercased. hashed_password is only populated by the
    lookups that need it (get_by_email) and is never serialized outward.

    role_id is the persisted reference. role is None until the
    authentication dependency expands it (role + permissions) once per request.
    """

    email: str
    type: str
    id: int | None = None
    name: str | None = None
    hashed_password: str | None = None
    role_id: int | None = None
    role: Role | None = None
    suspended: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

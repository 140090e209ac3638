"""
API request and response models for RoleGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Permission, Role, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# bcrypt ignores everything after 72 bytes.
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72


def _normalize_email(value: str) -> str:
    # EmailStr only lowercases the domain; stored emails are lowercased whole.
    return value.lower()


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    type defaults to the configured default user type when omitted; the route
    checks it against the configured types and the staff-needs-a-role rule.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    name: Optional[str] = Field(default=None, max_length=255)
    role: Optional[int] = None
    type: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class SigninRequest(BaseModel):
    """Request body for POST /api/v1/auth/signin."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh-token. "Bearer " prefix optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    """Public view of a user -- never includes the password hash or token history."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str] = None
    role: Optional[int] = None
    type: str
    suspended: bool = False

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role_id,
            type=user.type,
            suspended=user.suspended,
        )


class AuthResponse(BaseModel):
    """Response for signup, signin and refresh-token."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserSummary
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the resolved caller, permissions expanded."""

    model_config = ConfigDict(frozen=True)

    user: UserSummary
    role_name: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Permissions and roles
# ---------------------------------------------------------------------------


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    label: str
    module: str

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(id=permission.id, name=permission.name, label=permission.label, module=permission.module)


class PermissionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int
    permissions: list[PermissionResponse]


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles. Permissions are referenced by name."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    permissions: list[str] = Field(min_length=1, max_length=200)


class RoleUpdate(BaseModel):
    """Request body for PUT /api/v1/roles/{id}.

    permissions is optional; when given it replaces the set and must be non-empty.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    permissions: Optional[list[str]] = Field(default=None, min_length=1, max_length=200)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    permissions: list[PermissionResponse]
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            permissions=[PermissionResponse.from_permission(p) for p in role.permissions],
            created_at=role.created_at or "",
            updated_at=role.updated_at or "",
        )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserEdit(BaseModel):
    """Request body for PUT /api/v1/users/edit. At least one field is required."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[int] = None


class SetUserRole(BaseModel):
    """Request body for PUT /api/v1/users/set-new-role."""

    user_id: int
    role: int


class SuspensionUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/suspension."""

    suspended: bool


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

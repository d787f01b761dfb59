"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
rbac/models.py, which own the internal domain representation. Route handlers
map between the two with the from_* factory methods colocated here.

Wire format: camelCase JSON. ApiModel generates camelCase aliases and still
accepts snake_case field names on input (populate_by_name=True). FastAPI
serializes response_model output by alias.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import SessionInfo, TokenPair, User
from rbac.models import Permission, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PERMISSION_PATTERN = r"^[a-z0-9][a-z0-9_-]*:[a-z0-9][a-z0-9_-]*$"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenApiModel(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(ApiModel):
    """Request body for POST /api/v1/auth/register.

    max_length on password keeps inputs well below bcrypt cost concerns; the
    hashing layer truncates to bcrypt's 72-byte limit either way.
    """

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class LoginRequest(ApiModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(ApiModel):
    """Body for POST /auth/refresh. The token may instead arrive by header or cookie."""

    refresh_token: Optional[str] = Field(default=None, max_length=512)


class VerifyEmailRequest(ApiModel):
    token: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(ApiModel):
    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(ApiModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=255)


class ChangePasswordRequest(ApiModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=8, max_length=255)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(FrozenApiModel):
    id: int
    email: str
    first_name: str
    last_name: str
    is_email_verified: bool
    is_active: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_email_verified=user.is_email_verified,
            is_active=user.is_active,
        )


class AuthResponse(FrozenApiModel):
    """Response for login and refresh. expires_at is the access token expiry."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_at: str
    user: UserResponse

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "AuthResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_at=pair.expires_at,
            user=UserResponse.from_user(pair.user),
        )


class MeResponse(UserResponse):
    session_id: int
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)


class MessageResponse(FrozenApiModel):
    message: str


class RevokedCountResponse(FrozenApiModel):
    message: str
    revoked: int


class SessionResponse(FrozenApiModel):
    id: int
    device_name: Optional[str]
    device_type: str
    ip_address: Optional[str]
    last_activity_at: str
    created_at: str
    expires_at: str
    is_current: bool

    @classmethod
    def from_info(cls, info: SessionInfo) -> "SessionResponse":
        return cls(
            id=info.id,
            device_name=info.device_name,
            device_type=info.device_type,
            ip_address=info.ip_address,
            last_activity_at=info.last_activity_at,
            created_at=info.created_at,
            expires_at=info.expires_at,
            is_current=info.is_current,
        )


# ---------------------------------------------------------------------------
# RBAC -- request models
# ---------------------------------------------------------------------------


class PermissionCreate(ApiModel):
    """resource and action default to the two halves of name when omitted."""

    name: str = Field(pattern=PERMISSION_PATTERN, max_length=100)
    description: str = Field(default="", max_length=500)
    resource: Optional[str] = Field(default=None, max_length=50)
    action: Optional[str] = Field(default=None, max_length=50)


class RoleCreate(ApiModel):
    name: str = Field(min_length=1, max_length=50)
    description: str = Field(default="", max_length=500)
    permission_ids: list[int] = Field(default_factory=list, max_length=500)
    is_system_role: bool = False


class RoleUpdate(ApiModel):
    """PATCH body. Omitted fields are left unchanged; permissionIds replaces the whole set."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    permission_ids: Optional[list[int]] = Field(default=None, max_length=500)


class AssignRolesRequest(ApiModel):
    role_ids: list[int] = Field(min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# RBAC -- response models
# ---------------------------------------------------------------------------


class PermissionResponse(FrozenApiModel):
    id: int
    name: str
    description: str
    resource: str
    action: str
    created_at: Optional[str] = None

    @classmethod
    def from_permission(cls, perm: Permission) -> "PermissionResponse":
        return cls(
            id=perm.id,
            name=perm.name,
            description=perm.description,
            resource=perm.resource,
            action=perm.action,
            created_at=perm.created_at,
        )


class PermissionListResponse(FrozenApiModel):
    permissions: list[PermissionResponse]
    grouped: dict[str, list[PermissionResponse]]


class PermissionStatsResponse(FrozenApiModel):
    total: int
    resources: int
    by_resource: dict[str, int]


class RoleResponse(FrozenApiModel):
    id: int
    name: str
    description: str
    is_system_role: bool
    permissions: list[PermissionResponse]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            is_system_role=role.is_system_role,
            permissions=[PermissionResponse.from_permission(p) for p in role.permissions],
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


class RoleStatsResponse(FrozenApiModel):
    total: int
    system: int
    custom: int


class UserRolesResponse(FrozenApiModel):
    user_id: int
    roles: list[RoleResponse]
    permissions: list[str]


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

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

"""
API request and response models for Authenticator REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
activity/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from activity.models import ActivityLogEntry
from auth.models import User
from auth.tokens import MAX_PASSWORD_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# sAMAccountName-safe override for the derived directory username.
USERNAME_PATTERN = r"^[A-Za-z0-9._-]{1,20}$"

_Name = Annotated[str, Field(min_length=1, max_length=100)]
_Email = Annotated[str, Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)]


def _fits_bcrypt(value: str) -> str:
    if password_too_long(value):
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


# Minimum length is a runtime setting (MIN_PASSWORD_LENGTH), checked in the routes.
_Password = Annotated[str, Field(min_length=1), AfterValidator(_fits_bcrypt)]


class _StripsIdentity(BaseModel):
    """Strips name and email only. Passwords are taken byte-for-byte."""

    @field_validator("name", "email", mode="before", check_fields=False)
    @classmethod
    def strip_identity(cls, value):
        return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"
    superadmin = "superadmin"


# ---------------------------------------------------------------------------
# Shared envelopes
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
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


class DatabaseHealthResponse(BaseModel):
    """Response for GET /api/health/db."""

    model_config = ConfigDict(frozen=True)

    status: str
    message: str
    timestamp: str


class InfoResponse(BaseModel):
    """Response for GET /api/info."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str
    auth_method: str
    directory_provisioning: bool
    self_registration: bool


class DirectoryStatus(BaseModel):
    """Outcome of mirroring a change into the directory.

    status is created | updated | deleted | skipped | failed. kind is set for
    failed outcomes only: already_exists | not_found | transport.
    """

    model_config = ConfigDict(frozen=True)

    status: str
    reason: Optional[str] = None
    kind: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    directory: Optional[DirectoryStatus] = None


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user record. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: str
    directory_managed: bool
    created_at: str
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            directory_managed=user.is_directory_managed,
            created_at=user.created_at or "",
            updated_at=user.updated_at,
        )


class UserListRow(BaseModel):
    """One row of GET /api/users: the directory of accounts, no role data."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    created_at: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class RegisterRequest(_StripsIdentity):
    """Request body for POST /api/auth/register."""

    name: _Name
    email: _Email
    password: _Password


class LoginRequest(_StripsIdentity):
    """Request body for POST /api/auth/login.

    Both fields default to empty so a missing value reaches the authenticator
    and is rejected as invalid credentials, like every other failed login.
    """

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=128)


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    token: str
    user: UserResponse


class LoginResponse(BaseModel):
    """Response for POST /api/auth/login. auth_method is the authority that accepted the login."""

    model_config = ConfigDict(frozen=True)

    token: str
    user: UserResponse
    auth_method: str  # "local" | "directory"


# ---------------------------------------------------------------------------
# Self-service profile
# ---------------------------------------------------------------------------


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/users/profile."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: _Name
    email: _Email


class PasswordChange(BaseModel):
    """Request body for PUT /api/users/change-password."""

    current_password: _Password
    new_password: _Password


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class AdminUserCreate(_StripsIdentity):
    """Request body for POST /api/admin/users.

    username overrides the directory account name that would otherwise be
    derived from the local part of email.
    """

    name: _Name
    email: _Email
    password: _Password
    role: RoleEnum = RoleEnum.user
    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)


class AdminUserUpdate(BaseModel):
    """Request body for PUT /api/admin/users/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: _Name
    email: _Email
    role: RoleEnum


class PasswordReset(BaseModel):
    """Request body for POST /api/admin/users/{id}/reset-password."""

    new_password: _Password


class AdminUserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse
    directory: Optional[DirectoryStatus] = None


class AdminUserList(BaseModel):
    """Response for GET /api/admin/users."""

    model_config = ConfigDict(frozen=True)

    users: list[UserResponse]
    total: int


class RoleCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    count: int


class StatsResponse(BaseModel):
    """Response for GET /api/admin/stats. recent counts accounts created in the last 30 days."""

    model_config = ConfigDict(frozen=True)

    total: int
    recent: int
    by_role: list[RoleCount]


class DirectoryLookupResponse(BaseModel):
    """Response for GET /api/admin/directory/{email}."""

    model_config = ConfigDict(frozen=True)

    email: str
    exists: bool
    provisioning_enabled: bool


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


class ActivityRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    activity_type: str
    description: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: str

    @classmethod
    def from_entry(cls, entry: ActivityLogEntry) -> "ActivityRow":
        return cls(
            id=entry.id,
            activity_type=entry.activity_type,
            description=entry.description,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            timestamp=entry.timestamp,
        )


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_page: int
    total_pages: int
    total_activities: int
    has_next: bool
    has_prev: bool


class ActivityPage(BaseModel):
    """Response for GET /api/activity."""

    model_config = ConfigDict(frozen=True)

    activities: list[ActivityRow]
    pagination: Pagination


class ActivitySummary(BaseModel):
    """Response for GET /api/activity/summary."""

    model_config = ConfigDict(frozen=True)

    recent_activities: list[ActivityRow]
    activity_counts: dict[str, int]
    last_login: Optional[str] = None


class CleanupResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    deleted_count: int

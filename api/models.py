"""
API request and response models for hearthgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Invite, InviteAllowance, Level, Role, Scope, SessionInfo, UnlimitedInvites

# Passwords longer than bcrypt's 72-byte input are truncated by auth/passwords.py.
# The upper bound here only stops absurd payloads.
_PASSWORD_MAX = 255
_NEW_PASSWORD_MIN = 8

# Usernames are trimmed. Passwords are never normalized: they are hashed exactly as typed.
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ScopeEnum(str, Enum):
    user_management = "user_management"
    dangerous_sql = "dangerous_sql"
    storage = "storage"
    media = "media"

    def to_domain(self) -> Scope:
        return Scope[self.name.upper()]


class LevelEnum(str, Enum):
    none = "none"
    view = "view"
    edit = "edit"

    def to_domain(self) -> Level:
        return Level[self.name.upper()]


# ---------------------------------------------------------------------------
# Shared
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


class RoleModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    scope: ScopeEnum
    level: LevelEnum
    name: str

    @classmethod
    def from_domain(cls, role: Role) -> "RoleModel":
        return cls(
            scope=ScopeEnum(role.scope.name.lower()),
            level=LevelEnum(role.level.name.lower()),
            name=role.name,
        )


class InviteAllowanceModel(BaseModel):
    """Either unlimited=True (remaining is None) or a concrete remaining count."""

    model_config = ConfigDict(frozen=True)

    unlimited: bool
    remaining: Optional[int] = None

    @classmethod
    def from_domain(cls, allowance: InviteAllowance) -> "InviteAllowanceModel":
        if isinstance(allowance, UnlimitedInvites):
            return cls(unlimited=True)
        return cls(unlimited=False, remaining=allowance.count)


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    issued_at: str
    refreshed_at: str
    expires_at: str
    expired: bool

    @classmethod
    def from_domain(cls, info: SessionInfo) -> "SessionResponse":
        return cls(
            session_id=info.session.id,
            issued_at=info.session.issued_at,
            refreshed_at=info.session.refreshed_at,
            expires_at=info.session.expires_at,
            expired=info.expired,
        )


# ---------------------------------------------------------------------------
# Auth -- login, identity, invite registration
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: Username
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    expires_in: int


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    session_id: str
    roles: list[RoleModel]


class InviteInfoResponse(BaseModel):
    """Response for GET /api/v1/auth/invite/{code}: who is inviting you."""

    model_config = ConfigDict(frozen=True)

    invite_code: str
    invited_by: str


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/invite/{code}."""

    username: Username
    password: str = Field(min_length=_NEW_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    confirm_password: str = Field(max_length=_PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    created_at: str
    roles: list[RoleModel]
    invites: InviteAllowanceModel


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=_NEW_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    new_password_confirm: str = Field(max_length=_PASSWORD_MAX)


class InviteLinkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    invite_code: str
    url: str


class InviteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    invite_code: str
    created_at: str
    consumed: bool
    consumed_at: Optional[str] = None

    @classmethod
    def from_domain(cls, invite: Invite) -> "InviteResponse":
        return cls(
            invite_code=invite.id,
            created_at=invite.created_at,
            consumed=invite.consumed,
            consumed_at=invite.consumed_at,
        )


# ---------------------------------------------------------------------------
# Admin -- user management
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/admin/users. Spends one of the caller's invites."""

    username: Username
    password: str = Field(min_length=_NEW_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class UserSummaryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    created_at: str
    last_login: Optional[str]
    active_sessions: int


class UserDetailResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    created_at: str
    roles: list[RoleModel]
    sessions: list[SessionResponse]
    invites: InviteAllowanceModel
    invited_by_user_id: Optional[str] = None
    invited_by_username: Optional[str] = None


class RoleGrant(BaseModel):
    scope: ScopeEnum
    level: LevelEnum

    def to_domain(self) -> Role:
        return Role(self.scope.to_domain(), self.level.to_domain())


class RolesUpdate(BaseModel):
    """Request body for PUT /api/v1/admin/users/{id}/roles. Unlisted scopes are unchanged."""

    roles: list[RoleGrant] = Field(min_length=1, max_length=len(Scope))


class InvitesResetResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    remaining: int


class SessionsInvalidatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    invalidated: int

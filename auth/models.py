"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial derived
properties). Stores and services do the work; these types own the shape.

Scope and Level are IntEnums because their integer values are what the roles
table stores. Adding a scope means appending a member -- never renumbering --
because existing grant rows reference the integer.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Union


class Scope(IntEnum):
    """An area of the system to which access can be granted."""

    USER_MANAGEMENT = 0
    DANGEROUS_SQL = 1
    STORAGE = 2
    MEDIA = 3

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


class Level(IntEnum):
    """Capability tier within a scope. Higher values imply every lower one."""

    NONE = 0
    VIEW = 1
    EDIT = 2


@dataclass(frozen=True)
class Role:
    scope: Scope
    level: Level

    @property
    def name(self) -> str:
        """Human-readable form, e.g. "User Management: Edit"."""
        return f"{self.scope.label}: {self.level.name.title()}"


# Every scope at Edit. Granted to the bootstrap account on every startup.
ALL_ROLES: tuple[Role, ...] = tuple(Role(scope, Level.EDIT) for scope in Scope)


@dataclass
class User:
    """A registered account.

    Soft-deleted users keep their row: username is replaced with a tombstone
    and deleted is set, so sessions and invites that reference the id still
    resolve for audit views.
    """

    id: str
    username: str
    password_hash: str
    created_at: str
    deleted: bool = False
    invite_id: str | None = None  # invite consumed at registration


@dataclass
class Session:
    """One authenticated login. Valid iff expires_at is in the future."""

    id: str
    user_id: str
    issued_at: str
    refreshed_at: str
    expires_at: str


@dataclass
class SessionInfo:
    """Session plus the derived expired flag, for display."""

    session: Session
    expired: bool


@dataclass
class Invite:
    id: str
    created_by_user_id: str
    created_at: str
    consumed_by_user_id: str | None = None
    consumed_at: str | None = None

    @property
    def consumed(self) -> bool:
        return self.consumed_by_user_id is not None


@dataclass(frozen=True)
class UnlimitedInvites:
    """The user may mint invites without limit (Edit on user management)."""


@dataclass(frozen=True)
class InviteCount:
    count: int


InviteAllowance = Union[UnlimitedInvites, InviteCount]


@dataclass
class UserSummary:
    """One row of the administrative user listing."""

    id: str
    username: str
    created_at: str
    last_login: str | None
    active_sessions: int


@dataclass
class UserDetail:
    user: User
    roles: list[Role]
    sessions: list[SessionInfo]
    allowance: InviteAllowance
    invited_by_user_id: str | None = None
    invited_by_username: str | None = None


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, as resolved from a valid access token.

    roles are the grants captured when the access token was minted. They may
    lag the store by up to one access-token lifetime.
    """

    user_id: str
    username: str
    session_id: str
    roles: tuple[Role, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TokenPair:
    refresh_token: str
    access_token: str

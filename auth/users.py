"""
auth/users.py -- Credential Store: user records and password verification.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user is the mapper. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Plaintext passwords never leave this module's call frames: they are hashed
  with bcrypt (auth/passwords.py) before any write and are never logged.

  verify_login() always runs bcrypt, against DUMMY_HASH when the username is
  unknown or deleted, so response time does not reveal which usernames exist.
  It raises InvalidUsername or InvalidPassword for diagnosability; both are
  InvalidCredentials and the API layer maps them to one generic message.

  A UNIQUE violation on username is translated to DuplicateUsername here, so
  callers never see an IntegrityError.

Soft delete:
  soft_delete_user() replaces the username with a "deleted:<user id>" tombstone
  (freeing the name for reuse), sets deleted=1, expires every session and
  drops unconsumed invites, all in one transaction. The row itself stays.
  The "deleted:" prefix is reserved: create_user() refuses it as taken, so no
  live account can occupy a tombstone before its owner is deleted.

Open question, decided: change_password() does not invalidate existing
sessions. Administrators can force that with SessionStore.invalidate_all_for_user().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import and_, case, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.db import Clock, new_id, to_iso, transaction, utcnow
from auth.errors import (
    DuplicateUsername,
    InvalidCurrentPassword,
    InvalidPassword,
    InvalidUsername,
    PasswordMismatch,
    UserNotFound,
)
from auth.models import Role, User, UserSummary
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.roles import RoleStore
from auth.schema import invites as _invites
from auth.schema import sessions as _sessions
from auth.schema import users as _users
from auth.sessions import SessionStore

logger = logging.getLogger("hearthgate.auth.users")

TOMBSTONE_PREFIX = "deleted:"


class CredentialStore:
    """Repository for User entities.

    Usage:
        store = CredentialStore(engine, roles=role_store, sessions=session_store)
        user_id = store.create_user("alice", "secret123")
        store.verify_login("alice", "secret123") == user_id   # True
    """

    def __init__(self, engine: Engine, roles: RoleStore, sessions: SessionStore, clock: Clock = utcnow) -> None:
        self.engine = engine
        self.roles = roles
        self.sessions = sessions
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        password: str,
        initial_roles: Iterable[Role] = (),
        invite_id: str | None = None,
        conn: Connection | None = None,
    ) -> str:
        """Insert a new user with its initial role grants and return the new user id.

        Raises DuplicateUsername if the username is taken or falls in the reserved
        tombstone namespace. The insert and the role grants share one transaction
        (the caller's, if conn is given).
        """
        if username.startswith(TOMBSTONE_PREFIX):
            raise DuplicateUsername(f"The username {username!r} is reserved.")
        password_hash = hash_password(password)
        user_id = new_id("user")
        with transaction(self.engine, conn) as c:
            try:
                c.execute(
                    _users.insert().values(
                        user_id=user_id,
                        username=username,
                        password_hash=password_hash,
                        created_at=to_iso(self._clock()),
                        deleted=0,
                        invite_id=invite_id,
                    )
                )
            except IntegrityError as exc:
                raise DuplicateUsername(f"The username {username!r} is already taken.") from exc
            self.roles.set_roles(user_id, initial_roles, conn=c)
        logger.info("Created user %s (%s)", username, user_id)
        return user_id

    def verify_login(self, username: str, password: str) -> str:
        """Return the user id for valid credentials.

        Raises InvalidUsername for unknown or deleted users, InvalidPassword
        for a hash mismatch.
        """
        with transaction(self.engine) as c:
            row = c.execute(
                select(_users.c.user_id, _users.c.password_hash).where(
                    (_users.c.username == username) & (_users.c.deleted == 0)
                )
            ).fetchone()
        if row is None:
            # Equalize timing -- do NOT return early before running bcrypt.
            verify_password(password, DUMMY_HASH)
            raise InvalidUsername("invalid username")
        if not verify_password(password, row.password_hash):
            raise InvalidPassword("invalid password")
        return row.user_id

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        new_password_confirm: str,
    ) -> None:
        """Replace the user's password hash after verifying the current password.

        Raises InvalidCurrentPassword, then PasswordMismatch, in that order.
        Existing sessions stay valid.
        """
        user = self.get_user(user_id)
        if user is None or user.deleted or not verify_password(current_password, user.password_hash):
            raise InvalidCurrentPassword("invalid current password")
        if new_password != new_password_confirm:
            raise PasswordMismatch("new passwords do not match")
        new_hash = hash_password(new_password)
        with transaction(self.engine) as c:
            c.execute(_users.update().where(_users.c.user_id == user_id).values(password_hash=new_hash))
        logger.info("Password changed for user %s", user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_user(self, user_id: str, conn: Connection | None = None) -> User | None:
        """Look up a user by id, deleted or not. Returns None if not found."""
        with transaction(self.engine, conn) as c:
            row = c.execute(_users.select().where(_users.c.user_id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_id_by_username(self, username: str, conn: Connection | None = None) -> str | None:
        """Exact, case-sensitive match among non-deleted users."""
        with transaction(self.engine, conn) as c:
            return c.execute(
                select(_users.c.user_id).where((_users.c.username == username) & (_users.c.deleted == 0))
            ).scalar()

    def list_users(self) -> list[UserSummary]:
        """Return every non-deleted user with last login and active session count, ordered by username."""
        now = to_iso(self._clock())
        active = func.sum(case((_sessions.c.expires_at > now, 1), else_=0))
        query = (
            select(
                _users.c.user_id,
                _users.c.username,
                _users.c.created_at,
                func.max(_sessions.c.issued_at).label("last_login"),
                func.coalesce(active, 0).label("active_sessions"),
            )
            .select_from(_users.outerjoin(_sessions, _users.c.user_id == _sessions.c.user_id))
            .where(_users.c.deleted == 0)
            .group_by(_users.c.user_id, _users.c.username, _users.c.created_at)
            .order_by(_users.c.username)
        )
        with transaction(self.engine) as c:
            rows = c.execute(query).fetchall()
        return [
            UserSummary(
                id=r.user_id,
                username=r.username,
                created_at=r.created_at,
                last_login=r.last_login,
                active_sessions=int(r.active_sessions),
            )
            for r in rows
        ]

    def invited_by(self, user_id: str, conn: Connection | None = None) -> str | None:
        """Return the id of the user whose invite created user_id, if any."""
        with transaction(self.engine, conn) as c:
            return c.execute(
                select(_invites.c.created_by_user_id)
                .select_from(_users.join(_invites, _users.c.invite_id == _invites.c.invite_id))
                .where(_users.c.user_id == user_id)
            ).scalar()

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def soft_delete_user(self, user_id: str) -> None:
        """Tombstone the user, expire its sessions and drop its unused invites. One transaction.

        Raises UserNotFound if the id does not exist or is already deleted.
        """
        with transaction(self.engine) as c:
            result = c.execute(
                _users.update()
                .where(and_(_users.c.user_id == user_id, _users.c.deleted == 0))
                .values(username=f"{TOMBSTONE_PREFIX}{user_id}", deleted=1)
            )
            if result.rowcount == 0:
                raise UserNotFound(f"No active user with id {user_id}.")
            self.sessions.invalidate_all_for_user(user_id, conn=c)
            c.execute(
                _invites.delete().where(
                    (_invites.c.created_by_user_id == user_id) & (_invites.c.consumed_by_user_id.is_(None))
                )
            )
        logger.info("Soft-deleted user %s", user_id)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.user_id,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
        deleted=bool(row.deleted),
        invite_id=row.invite_id,
    )

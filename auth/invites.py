"""
auth/invites.py -- Invite Ledger: invite codes, quotas and invite-gated registration.

One row per invite code. consumed_by_user_id moves from NULL to a user id
exactly once and never back; that single transition is what "spent" means.

Double consumption:
  consume_invite() is a conditional UPDATE ... WHERE consumed_by_user_id IS NULL.
  When two requests race for the same code, only one UPDATE matches a row; the
  loser sees rowcount == 0 and gets InvalidOrExpiredInvite. Its enclosing
  transaction then rolls back, taking the half-created user with it.

Quota:
  A user's allowance is the number of unconsumed invites they created, or
  UnlimitedInvites if they hold Edit on the user-management scope. The
  unlimited case is a distinct type rather than a magic -1.

set_remaining_invites() is a destructive reset (delete unused, mint N), not a
delta, and runs in one transaction.

register_with_invite() and invite_user() each run validate -> create user ->
consume invite -> grant starting invites inside ONE transaction. Any failure
(taken username, lost race) rolls back every step.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine

from auth.db import Clock, new_id, to_iso, transaction, utcnow
from auth.errors import InvalidOrExpiredInvite, NoInvitesRemaining
from auth.models import Invite, InviteAllowance, InviteCount, Level, Scope, UnlimitedInvites
from auth.roles import RoleStore, has_role
from auth.schema import invites as _invites
from auth.users import CredentialStore

logger = logging.getLogger("hearthgate.auth.invites")

DEFAULT_STARTING_INVITES = 5


def generate_invite_url(host: str, invite_code: str, path_prefix: str = "/auth/invite") -> str:
    """Return a shareable registration URL. Plain http only for localhost."""
    scheme = "http" if host.startswith(("localhost", "127.0.0.1")) else "https"
    return f"{scheme}://{host}{path_prefix}/{invite_code}"


class InviteLedger:
    """Repository and workflows for Invite entities.

    Usage:
        ledger = InviteLedger(engine, credentials=credential_store, roles=role_store)
        code = ledger.create_invite(inviter_id)
        new_user_id = ledger.register_with_invite(code, "alice", "secret123")
        ledger.register_with_invite(code, "bob", "hunter22")   # InvalidOrExpiredInvite
    """

    def __init__(
        self,
        engine: Engine,
        credentials: CredentialStore,
        roles: RoleStore,
        starting_invites: int = DEFAULT_STARTING_INVITES,
        clock: Clock = utcnow,
    ) -> None:
        self.engine = engine
        self.credentials = credentials
        self.roles = roles
        self.starting_invites = starting_invites
        self._clock = clock

    # ------------------------------------------------------------------
    # Single-invite primitives
    # ------------------------------------------------------------------

    def create_invite(self, created_by_user_id: str, conn: Connection | None = None) -> str:
        invite_id = new_id("inv")
        with transaction(self.engine, conn) as c:
            c.execute(
                _invites.insert().values(
                    invite_id=invite_id,
                    created_by_user_id=created_by_user_id,
                    created_at=to_iso(self._clock()),
                )
            )
        return invite_id

    def consume_invite(self, invite_id: str, consumed_by_user_id: str, conn: Connection | None = None) -> None:
        """Mark the invite spent. Raises InvalidOrExpiredInvite if it was unknown or already spent."""
        with transaction(self.engine, conn) as c:
            result = c.execute(
                _invites.update()
                .where((_invites.c.invite_id == invite_id) & (_invites.c.consumed_by_user_id.is_(None)))
                .values(consumed_by_user_id=consumed_by_user_id, consumed_at=to_iso(self._clock()))
            )
            if result.rowcount != 1:
                raise InvalidOrExpiredInvite("invalid or expired invite code")

    def validate_invite_code(self, invite_code: str, conn: Connection | None = None) -> str:
        """Return the id of the user who created the unconsumed invite, or raise InvalidOrExpiredInvite."""
        with transaction(self.engine, conn) as c:
            created_by = c.execute(
                select(_invites.c.created_by_user_id).where(
                    (_invites.c.invite_id == invite_code) & (_invites.c.consumed_by_user_id.is_(None))
                )
            ).scalar()
        if created_by is None:
            raise InvalidOrExpiredInvite("invalid or expired invite code")
        return created_by

    # ------------------------------------------------------------------
    # Quota
    # ------------------------------------------------------------------

    def count_unconsumed(self, user_id: str, conn: Connection | None = None) -> int:
        with transaction(self.engine, conn) as c:
            result = c.execute(
                select(func.count())
                .select_from(_invites)
                .where((_invites.c.created_by_user_id == user_id) & (_invites.c.consumed_by_user_id.is_(None)))
            ).scalar()
        return result or 0

    def remaining_invites(self, user_id: str, conn: Connection | None = None) -> InviteAllowance:
        if has_role(self.roles.get_roles(user_id, conn=conn), Scope.USER_MANAGEMENT, Level.EDIT):
            return UnlimitedInvites()
        return InviteCount(self.count_unconsumed(user_id, conn=conn))

    def set_remaining_invites(self, user_id: str, target_count: int) -> None:
        """Delete every unconsumed invite of user_id, then mint exactly target_count new ones."""
        if target_count < 0:
            raise ValueError("target_count cannot be negative")
        with transaction(self.engine) as c:
            c.execute(
                _invites.delete().where(
                    (_invites.c.created_by_user_id == user_id) & (_invites.c.consumed_by_user_id.is_(None))
                )
            )
            for _ in range(target_count):
                self.create_invite(user_id, conn=c)
        logger.info("Reset remaining invites for user %s to %d", user_id, target_count)

    def list_invites(self, user_id: str) -> list[Invite]:
        """Every invite created by user_id, newest first."""
        with transaction(self.engine) as c:
            rows = c.execute(
                _invites.select()
                .where(_invites.c.created_by_user_id == user_id)
                .order_by(_invites.c.created_at.desc(), _invites.c.invite_id)
            ).fetchall()
        return [_row_to_invite(r) for r in rows]

    def get_user_invite_id(self, user_id: str, conn: Connection | None = None) -> str:
        """Return one of the user's unused codes for sharing.

        Users with unlimited invites get a fresh code when they have none left;
        everyone else gets NoInvitesRemaining.
        """
        with transaction(self.engine, conn) as c:
            invite_id = self._first_unused(user_id, c)
            if invite_id is not None:
                return invite_id
            if isinstance(self.remaining_invites(user_id, conn=c), UnlimitedInvites):
                return self.create_invite(user_id, conn=c)
        raise NoInvitesRemaining("no invites remaining")

    # ------------------------------------------------------------------
    # Registration workflows
    # ------------------------------------------------------------------

    def register_with_invite(self, invite_code: str, username: str, password: str) -> str:
        """Self-service registration. Returns the new user id.

        Raises InvalidOrExpiredInvite or DuplicateUsername; nothing is
        persisted on failure.
        """
        with transaction(self.engine) as c:
            inviter_id = self.validate_invite_code(invite_code, conn=c)
            user_id = self._create_invited_user(invite_code, username, password, c)
        logger.info("User %s registered with an invite from %s", username, inviter_id)
        return user_id

    def invite_user(self, inviter_id: str, username: str, password: str) -> str:
        """Administrative account creation that spends one of the inviter's invites.

        Raises NoInvitesRemaining when the inviter has no unused invite and
        lacks Edit on user management.
        """
        with transaction(self.engine) as c:
            invite_id = self._first_unused(inviter_id, c)
            if invite_id is None:
                if not isinstance(self.remaining_invites(inviter_id, conn=c), UnlimitedInvites):
                    raise NoInvitesRemaining("no invites remaining")
                invite_id = self.create_invite(inviter_id, conn=c)
            user_id = self._create_invited_user(invite_id, username, password, c)
        logger.info("User %s created by %s", username, inviter_id)
        return user_id

    def _create_invited_user(self, invite_id: str, username: str, password: str, conn: Connection) -> str:
        user_id = self.credentials.create_user(username, password, invite_id=invite_id, conn=conn)
        self.consume_invite(invite_id, user_id, conn=conn)
        for _ in range(self.starting_invites):
            self.create_invite(user_id, conn=conn)
        return user_id

    def _first_unused(self, user_id: str, conn: Connection) -> str | None:
        return conn.execute(
            select(_invites.c.invite_id)
            .where((_invites.c.created_by_user_id == user_id) & (_invites.c.consumed_by_user_id.is_(None)))
            .order_by(_invites.c.created_at.desc(), _invites.c.invite_id)
            .limit(1)
        ).scalar()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_invite(row) -> Invite:
    return Invite(
        id=row.invite_id,
        created_by_user_id=row.created_by_user_id,
        created_at=row.created_at,
        consumed_by_user_id=row.consumed_by_user_id,
        consumed_at=row.consumed_at,
    )

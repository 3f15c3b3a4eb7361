"""
auth/roles.py -- Role Store: per-user (scope, level) grants.

Invariants:
  At most one level per (user, scope). set_roles() deletes every row for a
  scope before inserting the new level, and inserts nothing for Level.NONE.
  A missing row therefore means Level.NONE, and get_roles() always returns
  exactly one Role per Scope member so callers never special-case "no row".

  set_roles() applies the whole role set in one transaction. A reader never
  observes a half-applied update.

has_role() is the single authorization primitive. Every higher-level check
(route dependencies, AuthContext.verify_role) calls it.

Access tokens carry a compact copy of the grants: {"user_management": 2, ...}
with Level.NONE omitted. roles_to_claim / roles_from_claim convert both ways
and ignore unknown scope names so a token minted by a newer build still parses.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.db import transaction
from auth.models import ALL_ROLES, Level, Role, Scope
from auth.schema import roles as _roles


def has_role(roles: Iterable[Role], scope: Scope, minimum: Level) -> bool:
    """Return True if any role grants scope at minimum or higher."""
    return any(role.scope == scope and role.level >= minimum for role in roles)


def roles_to_claim(roles: Iterable[Role]) -> dict[str, int]:
    return {role.scope.name.lower(): int(role.level) for role in roles if role.level > Level.NONE}


def roles_from_claim(claim: object) -> tuple[Role, ...]:
    """Expand a roles claim into one Role per known scope. Malformed claims yield all-None."""
    granted: dict[Scope, Level] = {}
    if isinstance(claim, dict):
        for name, value in claim.items():
            try:
                granted[Scope[str(name).upper()]] = Level(int(value))
            except (KeyError, ValueError, TypeError):
                continue
    return tuple(Role(scope, granted.get(scope, Level.NONE)) for scope in Scope)


class RoleStore:
    """Repository for role grants.

    Usage:
        store = RoleStore(engine)
        store.set_roles(user_id, [Role(Scope.STORAGE, Level.VIEW)])
        has_role(store.get_roles(user_id), Scope.STORAGE, Level.VIEW)  # True
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def set_roles(self, user_id: str, roles: Iterable[Role], conn: Connection | None = None) -> None:
        """Apply each (scope, level). Level.NONE removes the grant row; anything else replaces it.

        Scopes not mentioned in roles are left untouched. If the same scope
        appears twice, the last entry wins.
        """
        with transaction(self.engine, conn) as c:
            for role in roles:
                c.execute(_roles.delete().where((_roles.c.user_id == user_id) & (_roles.c.scope == int(role.scope))))
                if role.level != Level.NONE:
                    c.execute(_roles.insert().values(user_id=user_id, scope=int(role.scope), level=int(role.level)))

    def grant_all(self, user_id: str, conn: Connection | None = None) -> None:
        """Grant Edit on every scope. Idempotent."""
        self.set_roles(user_id, ALL_ROLES, conn=conn)

    def get_roles(self, user_id: str, conn: Connection | None = None) -> list[Role]:
        """Return exactly one Role per Scope, defaulting missing grants to Level.NONE."""
        with transaction(self.engine, conn) as c:
            rows = c.execute(select(_roles.c.scope, _roles.c.level).where(_roles.c.user_id == user_id)).fetchall()
        granted: dict[int, int] = {}
        for row in rows:
            # Legacy data could hold several levels per scope; the highest wins.
            granted[row.scope] = max(granted.get(row.scope, 0), row.level)
        return [Role(scope, Level(granted.get(int(scope), 0))) for scope in Scope]

"""
auth/schema.py -- SQLAlchemy Core tables for auth entities and their migrations.

Tables:
  users     -- one row per account. username UNIQUE. Never hard-deleted.
  sessions  -- one row per login. PK(session_id, user_id). Never hard-deleted;
               invalidation moves expires_at to "now".
  roles     -- (user_id, scope, level) grants. The PK spans all three columns,
               but RoleStore keeps at most one level per (user_id, scope).
  invites   -- one row per invite code. consumed_by_user_id goes from NULL to
               a user id exactly once.

Timestamps are fixed-width ISO-8601 UTC strings (see auth/db.py), so string
comparison in SQL is chronological comparison.

AUTH_MIGRATIONS is the ordered step list handed to core.db.run_migrations().
Append new steps; never edit or reorder shipped ones.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text
from sqlalchemy.engine import Connection

from core.db import MigrationStep

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("user_id", String(64), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("deleted", Integer, nullable=False, server_default="0"),
    # invite consumed at registration, NULL for bootstrap/legacy users
    Column("invite_id", String(64), ForeignKey("invites.invite_id")),
)

sessions = Table(
    "sessions",
    metadata,
    Column("session_id", String(64), nullable=False),
    Column("user_id", String(64), ForeignKey("users.user_id"), nullable=False),
    Column("issued_at", String(32), nullable=False),
    Column("refreshed_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    PrimaryKeyConstraint("session_id", "user_id"),
)

roles = Table(
    "roles",
    metadata,
    Column("user_id", String(64), ForeignKey("users.user_id"), nullable=False),
    Column("level", Integer, nullable=False),
    Column("scope", Integer, nullable=False),
    PrimaryKeyConstraint("user_id", "level", "scope"),
)

invites = Table(
    "invites",
    metadata,
    Column("invite_id", String(64), primary_key=True),
    Column("created_by_user_id", String(64), nullable=False),
    Column("consumed_by_user_id", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("consumed_at", String(32)),
)

_sessions_by_user = Index("ix_sessions_user_id", sessions.c.user_id)
_invites_by_creator = Index("ix_invites_created_by", invites.c.created_by_user_id)


# ---------------------------------------------------------------------------
# Migration steps (version N -> N+1)
# ---------------------------------------------------------------------------


def _create_users(conn: Connection) -> None:
    users.create(conn, checkfirst=True)


def _create_sessions(conn: Connection) -> None:
    sessions.create(conn, checkfirst=True)


def _create_roles(conn: Connection) -> None:
    roles.create(conn, checkfirst=True)


def _create_invites(conn: Connection) -> None:
    invites.create(conn, checkfirst=True)


AUTH_MIGRATIONS: list[MigrationStep] = [
    _create_users,
    _create_sessions,
    _create_roles,
    _create_invites,
]

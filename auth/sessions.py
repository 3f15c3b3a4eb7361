"""
auth/sessions.py -- Session Store: the revocable anchor behind every refresh token.

State machine per session:
  Active  (expires_at > now)
    -> Expired (expires_at <= now), reached by natural expiry or invalidate().
  Expired is terminal. Nothing ever moves expires_at forward.

Lifetimes:
  create() sets expires_at = now + refresh lifetime. touch_refresh() records
  refreshed_at each time an access token is minted but does NOT extend
  expires_at -- refresh tokens are not sliding, so a full re-login is required
  once the window closes.

Invalidation:
  invalidate() and invalidate_all_for_user() only update rows that are still
  active. Calling them again is a no-op, and a session that expired naturally
  keeps its original expires_at for the audit trail. Rows are never deleted.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.db import Clock, new_id, to_iso, transaction, utcnow
from auth.models import Session, SessionInfo
from auth.schema import sessions as _sessions

logger = logging.getLogger("hearthgate.auth.sessions")


class SessionStore:
    """Repository for Session entities.

    Usage:
        store = SessionStore(engine, lifetime=timedelta(days=180))
        session_id = store.create(user_id)
        store.is_valid(session_id)   # True
        store.invalidate(session_id)
        store.is_valid(session_id)   # False, permanently
    """

    def __init__(self, engine: Engine, lifetime: timedelta, clock: Clock = utcnow) -> None:
        self.engine = engine
        self.lifetime = lifetime
        self._clock = clock

    def create(self, user_id: str, conn: Connection | None = None) -> str:
        now = self._clock()
        session_id = new_id("session")
        with transaction(self.engine, conn) as c:
            c.execute(
                _sessions.insert().values(
                    session_id=session_id,
                    user_id=user_id,
                    issued_at=to_iso(now),
                    refreshed_at=to_iso(now),
                    expires_at=to_iso(now + self.lifetime),
                )
            )
        logger.info("Session %s created for user %s", session_id, user_id)
        return session_id

    def get_active(self, session_id: str, conn: Connection | None = None) -> Session | None:
        """Return the session if it exists and has not expired, else None."""
        now = to_iso(self._clock())
        with transaction(self.engine, conn) as c:
            row = c.execute(
                _sessions.select().where((_sessions.c.session_id == session_id) & (_sessions.c.expires_at > now))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def is_valid(self, session_id: str) -> bool:
        return self.get_active(session_id) is not None

    def touch_refresh(self, session_id: str, conn: Connection | None = None) -> None:
        with transaction(self.engine, conn) as c:
            c.execute(
                _sessions.update()
                .where(_sessions.c.session_id == session_id)
                .values(refreshed_at=to_iso(self._clock()))
            )

    def invalidate(self, session_id: str, conn: Connection | None = None) -> None:
        """Expire the session now. Idempotent."""
        now = to_iso(self._clock())
        with transaction(self.engine, conn) as c:
            result = c.execute(
                _sessions.update()
                .where((_sessions.c.session_id == session_id) & (_sessions.c.expires_at > now))
                .values(expires_at=now)
            )
        if result.rowcount:
            logger.info("Session %s invalidated", session_id)

    def invalidate_all_for_user(self, user_id: str, conn: Connection | None = None) -> int:
        """Expire every active session of user_id. Returns how many were active."""
        now = to_iso(self._clock())
        with transaction(self.engine, conn) as c:
            result = c.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > now))
                .values(expires_at=now)
            )
        if result.rowcount:
            logger.info("Invalidated %d session(s) for user %s", result.rowcount, user_id)
        return result.rowcount

    def list_for_user(self, user_id: str, conn: Connection | None = None) -> list[SessionInfo]:
        """Return all sessions of user_id, newest first, each flagged expired or not."""
        now = to_iso(self._clock())
        with transaction(self.engine, conn) as c:
            rows = c.execute(
                select(_sessions).where(_sessions.c.user_id == user_id).order_by(_sessions.c.issued_at.desc())
            ).fetchall()
        return [SessionInfo(session=_row_to_session(r), expired=r.expires_at <= now) for r in rows]


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.session_id,
        user_id=row.user_id,
        issued_at=row.issued_at,
        refreshed_at=row.refreshed_at,
        expires_at=row.expires_at,
    )

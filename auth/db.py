"""
auth/db.py -- Shared persistence helpers for the auth stores.

transaction():
  Every store method takes an optional conn. When a caller passes one, the
  method joins that caller's transaction; otherwise it opens its own with
  engine.begin(). This is how composite operations (register-with-invite,
  create-user-with-roles) stay all-or-nothing across several stores.

  OperationalError (locked database, unreachable server, disk I/O) is
  translated to StoreUnavailable here so raw storage error text never leaves
  the store layer.

Clock:
  Stores take a clock callable returning an aware UTC datetime. Production
  uses utcnow(); tests inject a controllable clock to walk sessions across
  their expiry.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError

from auth.errors import StoreUnavailable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Fixed-width ISO-8601 so lexical order in SQL equals chronological order."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def new_id(prefix: str) -> str:
    """Return an opaque, globally unique id such as "session_3f2a..."."""
    return f"{prefix}_{uuid.uuid4().hex}"


@contextmanager
def transaction(engine: Engine, conn: Connection | None = None) -> Iterator[Connection]:
    if conn is not None:
        yield conn
        return
    try:
        with engine.begin() as new_conn:
            yield new_conn
    except OperationalError as exc:
        raise StoreUnavailable("The auth database is unavailable.") from exc

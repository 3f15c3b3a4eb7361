"""
auth/passwords.py -- bcrypt password hashing with timing equalization.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt only reads the first 72 bytes of its input, and bcrypt 5 raises instead
of truncating. _encode() truncates explicitly so hashing and verification
agree on every input, including long passphrases.

The cost factor comes from Settings.bcrypt_rounds (default 12). The test
suite lowers it to keep fixtures fast.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_settings = get_settings()

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(_encode(plain), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database; treat as a non-match.
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Verify against it when the username does not
# exist so response time does not reveal which usernames are registered.
DUMMY_HASH: str = hash_password("hearthgate_timing_dummy")

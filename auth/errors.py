"""
auth/errors.py -- Domain exceptions raised by the auth stores and services.

Stores translate storage failures into these types at their boundary, so no
caller ever has to inspect a raw SQLAlchemy exception or its message text.

Credential failures keep distinct types (InvalidUsername / InvalidPassword)
for logs and tests, but both inherit InvalidCredentials. Network-facing code
catches or maps InvalidCredentials only, which keeps the public response
identical for "no such user" and "wrong password".

Layer rule: no imports from api/. This module has no dependencies at all.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every auth-domain failure."""


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    """Username unknown or password wrong. The public message never says which."""


class InvalidUsername(InvalidCredentials):
    pass


class InvalidPassword(InvalidCredentials):
    pass


class DuplicateUsername(AuthError):
    pass


class InvalidCurrentPassword(AuthError):
    pass


class PasswordMismatch(AuthError):
    pass


class UserNotFound(AuthError):
    pass


# ---------------------------------------------------------------------------
# Sessions and tokens
# ---------------------------------------------------------------------------


class InvalidSession(AuthError):
    """The session is unknown or its expires_at has passed."""


class MalformedToken(AuthError):
    """Unparseable token, bad signature, wrong issuer, or missing claims."""


class TokenExpired(MalformedToken):
    pass


class MalformedRefreshToken(MalformedToken):
    """The token is not a refresh token (missing subject or wrong audience)."""


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


class InvalidOrExpiredInvite(AuthError):
    pass


class NoInvitesRemaining(AuthError):
    pass


# ---------------------------------------------------------------------------
# Authorization and storage
# ---------------------------------------------------------------------------


class Unauthorized(AuthError):
    """A role check failed."""


class StoreUnavailable(AuthError):
    """The durable store could not be reached or refused the operation."""

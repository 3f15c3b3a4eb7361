"""
auth/access.py -- Access Control Facade: the contract request handlers consume.

AccessControl turns the two cookie values of a request into an AuthResolution:

  refresh  access   outcome
  -------  ------   -------------------------------------------------------
  absent   absent   anonymous, nothing to do
  absent   present  anonymous, clear cookies (orphaned access token)
  invalid  any      anonymous, clear cookies
  valid    valid    identity from the access token, no store lookups
  valid    stale    reissue the access token (touches refreshed_at) and
                    return it for the caller to persist; if reissue fails
                    (session expired or revoked) -> anonymous, clear cookies

"valid refresh" here means signature, issuer, expiry and audience only. The
session row is consulted when an access token must be minted, so a revoked
session stops authorizing requests within one access-token lifetime.

Token and session failures never escape resolve(); callers cannot tell "no
token" from "bad token". StoreUnavailable does escape: an unreachable database
is not an anonymous visitor.

AuthContext is the explicit per-request object handlers receive through a
FastAPI dependency. Identity accessors are pure; verify_role() performs exactly
one Role Store fetch so a revoked grant takes effect immediately on checks.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.errors import InvalidSession, MalformedToken, Unauthorized
from auth.models import Identity, Level, Scope, TokenPair
from auth.roles import RoleStore, has_role
from auth.sessions import SessionStore
from auth.tokens import TokenService

logger = logging.getLogger("hearthgate.auth.access")


@dataclass(frozen=True)
class AuthResolution:
    identity: Identity | None = None
    new_access_token: str | None = None
    clear_cookies: bool = False


ANONYMOUS = AuthResolution()


class AuthContext:
    """Identity of the current request plus role checks against the live Role Store."""

    def __init__(self, identity: Identity | None, roles: RoleStore) -> None:
        self.identity = identity
        self._roles = roles

    def is_logged_in(self) -> bool:
        return self.identity is not None

    def current_user_id(self) -> str | None:
        return self.identity.user_id if self.identity else None

    def current_username(self) -> str | None:
        return self.identity.username if self.identity else None

    def verify_role(self, scope: Scope, minimum: Level) -> bool:
        if self.identity is None:
            return False
        return has_role(self._roles.get_roles(self.identity.user_id), scope, minimum)

    def require_role(self, scope: Scope, minimum: Level) -> Identity:
        """Return the identity or raise Unauthorized."""
        if self.identity is None or not self.verify_role(scope, minimum):
            raise Unauthorized(f"{scope.label} access at {minimum.name.title()} level is required.")
        return self.identity


class AccessControl:
    """Sign-in, per-request resolution and sign-out over the Token Service."""

    def __init__(self, tokens: TokenService, sessions: SessionStore, roles: RoleStore) -> None:
        self.tokens = tokens
        self.sessions = sessions
        self.roles = roles

    def sign_in(self, username: str, password: str) -> TokenPair:
        """Verify credentials and open a session. Credential errors propagate."""
        refresh_token = self.tokens.issue_refresh_token(username, password)
        access_token = self.tokens.issue_access_token(refresh_token)
        logger.info("User %s signed in", username)
        return TokenPair(refresh_token=refresh_token, access_token=access_token)

    def resolve(self, refresh_token: str | None, access_token: str | None) -> AuthResolution:
        if not refresh_token:
            if access_token:
                logger.info("Access token without refresh token; clearing cookies")
                return AuthResolution(clear_cookies=True)
            return ANONYMOUS

        try:
            session_id = self.tokens.session_id_of(refresh_token)
        except MalformedToken:
            return AuthResolution(clear_cookies=True)

        if access_token:
            try:
                identity = self.tokens.identity_from_access_token(access_token)
            except MalformedToken:
                identity = None
            if identity is not None and identity.session_id == session_id:
                return AuthResolution(identity=identity)

        try:
            new_access_token = self.tokens.issue_access_token(refresh_token)
        except (MalformedToken, InvalidSession) as exc:
            logger.info("Could not reissue access token: %s", exc)
            return AuthResolution(clear_cookies=True)
        logger.debug("Access token refreshed for session %s", session_id)
        return AuthResolution(
            identity=self.tokens.identity_from_access_token(new_access_token),
            new_access_token=new_access_token,
        )

    def sign_out(self, refresh_token: str | None) -> None:
        """Invalidate the session behind refresh_token. Unverifiable tokens are ignored."""
        if not refresh_token:
            return
        try:
            session_id = self.tokens.session_id_of(refresh_token)
        except MalformedToken:
            logger.debug("Sign-out with an unverifiable refresh token")
            return
        self.sessions.invalidate(session_id)

    def context(self, resolution: AuthResolution) -> AuthContext:
        return AuthContext(resolution.identity, self.roles)

"""
auth/tokens.py -- Token Service: RS256 refresh and access tokens over sessions.

Security design decisions:
  Algorithm: python-jose with RS256. The private key signs, the public key
       verifies. The KeyPair is injected at construction; there is no
       module-level key state, so tests run with throwaway keys.

  Refresh token: sub = session id, aud = "refresh", username, iss, iat, exp
       (refresh lifetime). It carries authority to mint access tokens and
       nothing else. Its validity is cross-checked against the Session Store
       on every use, so invalidating the session revokes it.

  Access token: sub = user id, aud = "access", username, sid, roles, iss,
       iat, exp (access lifetime, 15 minutes by default). Self-contained; the
       roles claim is captured at issuance and stays stale until the next
       refresh.

  Audience: python-jose rejects a token that carries "aud" when no audience
       is passed to decode(). parse_token() therefore disables that check and
       callers compare the audience themselves, because one parser serves both
       token kinds.

  Expiry: checked against the injected clock, not the wall clock, so
       session expiry and token expiry agree in tests.

Failures raise MalformedToken (or its subclasses). The Access Control Facade
collapses all of them into "anonymous"; nothing here decides HTTP status.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from jose import JWTError, jwt

from auth.db import Clock, utcnow
from auth.errors import InvalidSession, MalformedRefreshToken, MalformedToken, TokenExpired
from auth.keys import KeyPair
from auth.models import Identity
from auth.roles import RoleStore, roles_from_claim, roles_to_claim
from auth.sessions import SessionStore
from auth.users import CredentialStore

logger = logging.getLogger("hearthgate.auth.tokens")

ALGORITHM = "RS256"
REFRESH_AUDIENCE = "refresh"
ACCESS_AUDIENCE = "access"

DEFAULT_ACCESS_LIFETIME = timedelta(minutes=15)
DEFAULT_REFRESH_LIFETIME = timedelta(days=6 * 30)


class TokenService:
    """Issues and verifies signed tokens. Owns no persisted state.

    Usage:
        tokens = TokenService(key_pair, credentials, sessions, roles)
        refresh = tokens.issue_refresh_token("alice", "secret123")
        access = tokens.issue_access_token(refresh)
        tokens.identity_from_access_token(access).username   # "alice"
    """

    def __init__(
        self,
        key_pair: KeyPair,
        credentials: CredentialStore,
        sessions: SessionStore,
        roles: RoleStore,
        issuer: str = "hearthgate",
        access_lifetime: timedelta = DEFAULT_ACCESS_LIFETIME,
        refresh_lifetime: timedelta = DEFAULT_REFRESH_LIFETIME,
        clock: Clock = utcnow,
    ) -> None:
        self.key_pair = key_pair
        self.credentials = credentials
        self.sessions = sessions
        self.roles = roles
        self.issuer = issuer
        self.access_lifetime = access_lifetime
        self.refresh_lifetime = refresh_lifetime
        self._clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def _sign(self, claims: dict[str, Any], lifetime: timedelta) -> str:
        now = self._clock()
        payload = {
            **claims,
            "iss": self.issuer,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
        }
        return jwt.encode(payload, self.key_pair.private_pem, algorithm=ALGORITHM)

    def issue_refresh_token(self, username: str, password: str) -> str:
        """Verify credentials, open a session and return a refresh token bound to it.

        Credential errors (InvalidUsername, InvalidPassword) propagate unchanged.
        """
        user_id = self.credentials.verify_login(username, password)
        session_id = self.sessions.create(user_id)
        return self._sign(
            {"sub": session_id, "aud": REFRESH_AUDIENCE, "username": username},
            self.refresh_lifetime,
        )

    def issue_access_token(self, refresh_token: str) -> str:
        """Mint an access token from a refresh token whose session is still active.

        Raises MalformedRefreshToken if the token does not parse, lacks a
        subject, or is not a refresh token; InvalidSession if the session is
        expired, unknown, or belongs to a deleted user.
        """
        session_id = self.session_id_of(refresh_token)
        session = self.sessions.get_active(session_id)
        if session is None:
            raise InvalidSession("session is expired or unknown")
        user = self.credentials.get_user(session.user_id)
        if user is None or user.deleted:
            raise InvalidSession("session owner no longer exists")

        self.sessions.touch_refresh(session_id)
        roles = self.roles.get_roles(user.id)
        return self._sign(
            {
                "sub": user.id,
                "aud": ACCESS_AUDIENCE,
                "username": user.username,
                "sid": session_id,
                "roles": roles_to_claim(roles),
            },
            self.access_lifetime,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def parse_token(self, token: str) -> dict[str, Any]:
        """Return the claims of a token signed by this service.

        Checks signature, issuer and expiry. Raises TokenExpired for an expired
        but otherwise valid token, MalformedToken for everything else.
        """
        try:
            claims = jwt.decode(
                token,
                self.key_pair.public_pem,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"verify_aud": False, "verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise MalformedToken("token could not be verified") from exc

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            raise MalformedToken("token has no expiry")
        if exp <= self._clock().timestamp():
            raise TokenExpired("token has expired")
        return claims

    def verify_token(self, token: str) -> bool:
        try:
            self.parse_token(token)
        except MalformedToken:
            return False
        return True

    def session_id_of(self, refresh_token: str) -> str:
        """Return the session id a refresh token is bound to."""
        try:
            claims = self.parse_token(refresh_token)
        except MalformedToken as exc:
            raise MalformedRefreshToken("refresh token could not be verified") from exc
        session_id = claims.get("sub")
        if not session_id or claims.get("aud") != REFRESH_AUDIENCE:
            raise MalformedRefreshToken("not a refresh token")
        return session_id

    def identity_from_access_token(self, access_token: str) -> Identity:
        """Build the caller's Identity from an access token. No store lookups."""
        claims = self.parse_token(access_token)
        user_id = claims.get("sub")
        if not user_id or claims.get("aud") != ACCESS_AUDIENCE:
            raise MalformedToken("not an access token")
        return Identity(
            user_id=user_id,
            username=str(claims.get("username", "")),
            session_id=str(claims.get("sid", "")),
            roles=roles_from_claim(claims.get("roles")),
        )

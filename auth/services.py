"""
auth/services.py -- Wiring for the auth stores and services.

build_auth_services() constructs every store against one engine and one
clock and returns them in an AuthServices container. api/main.py stores the
container on app.state.auth at startup; tests build their own against a
temporary database.

user_detail() lives here because it reads across all four stores.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.engine import Engine

from auth.access import AccessControl
from auth.db import Clock, transaction, utcnow
from auth.errors import UserNotFound
from auth.invites import InviteLedger
from auth.keys import KeyPair
from auth.models import UserDetail
from auth.roles import RoleStore
from auth.sessions import SessionStore
from auth.tokens import TokenService
from auth.users import CredentialStore
from core.config import Settings


@dataclass
class AuthServices:
    engine: Engine
    credentials: CredentialStore
    sessions: SessionStore
    roles: RoleStore
    invites: InviteLedger
    tokens: TokenService
    access: AccessControl

    def user_detail(self, user_id: str) -> UserDetail:
        """Everything the admin detail view shows about one user. Raises UserNotFound."""
        with transaction(self.engine) as c:
            user = self.credentials.get_user(user_id, conn=c)
            if user is None or user.deleted:
                raise UserNotFound(f"No active user with id {user_id}.")
            inviter_id = self.credentials.invited_by(user_id, conn=c)
            inviter = self.credentials.get_user(inviter_id, conn=c) if inviter_id else None
            return UserDetail(
                user=user,
                roles=self.roles.get_roles(user_id, conn=c),
                sessions=self.sessions.list_for_user(user_id, conn=c),
                allowance=self.invites.remaining_invites(user_id, conn=c),
                invited_by_user_id=inviter_id,
                invited_by_username=inviter.username if inviter else None,
            )


def build_auth_services(engine: Engine, key_pair: KeyPair, settings: Settings, clock: Clock = utcnow) -> AuthServices:
    refresh_lifetime = timedelta(seconds=settings.refresh_token_expire_seconds)
    access_lifetime = timedelta(seconds=settings.access_token_expire_seconds)

    roles = RoleStore(engine)
    sessions = SessionStore(engine, lifetime=refresh_lifetime, clock=clock)
    credentials = CredentialStore(engine, roles=roles, sessions=sessions, clock=clock)
    invites = InviteLedger(
        engine,
        credentials=credentials,
        roles=roles,
        starting_invites=settings.starting_invites,
        clock=clock,
    )
    tokens = TokenService(
        key_pair,
        credentials=credentials,
        sessions=sessions,
        roles=roles,
        issuer=settings.token_issuer,
        access_lifetime=access_lifetime,
        refresh_lifetime=refresh_lifetime,
        clock=clock,
    )
    return AuthServices(
        engine=engine,
        credentials=credentials,
        sessions=sessions,
        roles=roles,
        invites=invites,
        tokens=tokens,
        access=AccessControl(tokens, sessions=sessions, roles=roles),
    )

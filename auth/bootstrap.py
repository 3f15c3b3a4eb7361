"""
auth/bootstrap.py -- System account setup, run on every startup.

bootstrap_admin() enforces three things, each idempotent:
  1. The system account (Settings.admin_username) exists. On first run it is
     created with a random password written to Settings.admin_password_path
     with mode 0600. The password is never logged.
  2. It holds Edit on every scope. Re-applied every start so a newly added
     Scope member never leaves the administrator locked out.
  3. It has at least one unconsumed invite to share; when it has none the
     balance is reset to Settings.starting_invites.

Account creation and the password file write share one transaction: if the
file cannot be written the account is rolled back and startup fails.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import os
import secrets

from auth.db import transaction
from auth.models import ALL_ROLES
from auth.services import AuthServices
from core.config import Settings

logger = logging.getLogger("hearthgate.auth.bootstrap")


def _write_password_file(settings: Settings, password: str) -> None:
    path = settings.admin_password_path
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(password + "\n")


def bootstrap_admin(services: AuthServices, settings: Settings) -> str:
    """Ensure the system account exists with full grants. Returns its user id."""
    username = settings.admin_username
    with transaction(services.engine) as c:
        user_id = services.credentials.get_user_id_by_username(username, conn=c)
        if user_id is None:
            password = secrets.token_urlsafe(24)
            user_id = services.credentials.create_user(username, password, initial_roles=ALL_ROLES, conn=c)
            _write_password_file(settings, password)
            logger.warning(
                "Created system account %r. Its initial password is in %s",
                username,
                settings.admin_password_path,
            )
        services.roles.grant_all(user_id, conn=c)

    if services.invites.count_unconsumed(user_id) == 0:
        services.invites.set_remaining_invites(user_id, settings.starting_invites)
    return user_id

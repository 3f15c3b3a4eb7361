"""
tests/test_bootstrap.py -- System account creation and startup re-grants.
"""

from __future__ import annotations

import stat

import pytest

from auth.bootstrap import bootstrap_admin
from auth.models import Level, Role, Scope
from core.config import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(config_path=tmp_path / "config", data_path=tmp_path / "data", starting_invites=3)


def _password(settings: Settings) -> str:
    return settings.admin_password_path.read_text().strip()


def test_first_run_creates_admin_with_password_file(services, settings):
    user_id = bootstrap_admin(services, settings)

    path = settings.admin_password_path
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    assert services.credentials.verify_login("admin", _password(settings)) == user_id
    assert all(r.level == Level.EDIT for r in services.roles.get_roles(user_id))


def test_second_run_is_idempotent(services, settings):
    first = bootstrap_admin(services, settings)
    password = _password(settings)

    assert bootstrap_admin(services, settings) == first
    assert _password(settings) == password
    assert [u.username for u in services.credentials.list_users()] == ["admin"]


def test_restart_regrants_every_scope(services, settings):
    user_id = bootstrap_admin(services, settings)
    services.roles.set_roles(user_id, [Role(Scope.STORAGE, Level.NONE), Role(Scope.MEDIA, Level.VIEW)])

    bootstrap_admin(services, settings)

    assert all(r.level == Level.EDIT for r in services.roles.get_roles(user_id))


def test_invites_topped_up_only_when_exhausted(services, settings):
    user_id = bootstrap_admin(services, settings)
    assert services.invites.count_unconsumed(user_id) == 3

    services.invites.set_remaining_invites(user_id, 1)
    bootstrap_admin(services, settings)
    assert services.invites.count_unconsumed(user_id) == 1

    services.invites.set_remaining_invites(user_id, 0)
    bootstrap_admin(services, settings)
    assert services.invites.count_unconsumed(user_id) == 3


def test_unwritable_password_file_rolls_back_account(services, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    settings = Settings(config_path=blocker, data_path=tmp_path / "data")

    with pytest.raises(OSError):
        bootstrap_admin(services, settings)
    assert services.credentials.list_users() == []

"""
tests/test_access.py -- AccessControl.resolve decision table, sign-in/out and AuthContext.
"""

from __future__ import annotations

import pytest

from auth.access import ANONYMOUS, AuthResolution
from auth.errors import InvalidCredentials, Unauthorized
from auth.models import Level, Role, Scope


@pytest.fixture
def alice(make_user) -> str:
    return make_user("alice", roles=[Role(Scope.MEDIA, Level.VIEW)])


@pytest.fixture
def pair(services, alice):
    return services.access.sign_in("alice", "secret123")


# ---------------------------------------------------------------------------
# sign_in
# ---------------------------------------------------------------------------


def test_sign_in_returns_linked_pair(services, pair, alice):
    identity = services.tokens.identity_from_access_token(pair.access_token)
    assert identity.user_id == alice
    assert identity.session_id == services.tokens.session_id_of(pair.refresh_token)


def test_sign_in_bad_credentials(services, alice):
    with pytest.raises(InvalidCredentials):
        services.access.sign_in("alice", "nope")


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


def test_no_cookies_is_anonymous(services):
    assert services.access.resolve(None, None) == ANONYMOUS


def test_orphaned_access_token_clears_cookies(services, pair):
    assert services.access.resolve(None, pair.access_token) == AuthResolution(clear_cookies=True)


def test_valid_pair_needs_no_store_lookup(services, pair, alice, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("session store consulted")

    monkeypatch.setattr(services.sessions, "get_active", fail)
    resolution = services.access.resolve(pair.refresh_token, pair.access_token)

    assert resolution.identity.user_id == alice
    assert resolution.new_access_token is None
    assert not resolution.clear_cookies


def test_missing_access_token_is_reissued(services, pair, alice):
    resolution = services.access.resolve(pair.refresh_token, None)
    assert resolution.identity.user_id == alice
    assert resolution.new_access_token
    assert services.tokens.verify_token(resolution.new_access_token)


def test_expired_access_token_is_reissued(services, clock, pair, alice):
    clock.advance(minutes=16)
    resolution = services.access.resolve(pair.refresh_token, pair.access_token)
    assert resolution.identity.user_id == alice
    assert resolution.new_access_token != pair.access_token


def test_garbage_access_token_is_reissued(services, pair):
    resolution = services.access.resolve(pair.refresh_token, "garbage")
    assert resolution.new_access_token is not None
    assert not resolution.clear_cookies


def test_access_token_from_another_session_is_reissued(services, pair, alice):
    other = services.access.sign_in("alice", "secret123")
    resolution = services.access.resolve(pair.refresh_token, other.access_token)
    assert resolution.new_access_token is not None
    assert resolution.identity.session_id == services.tokens.session_id_of(pair.refresh_token)


def test_invalid_refresh_token_clears_cookies(services, pair):
    for refresh in ("garbage", pair.access_token):
        assert services.access.resolve(refresh, pair.access_token) == AuthResolution(clear_cookies=True)


def test_revoked_session_clears_cookies_once_access_token_is_stale(services, clock, pair):
    services.access.sign_out(pair.refresh_token)
    clock.advance(minutes=16)
    assert services.access.resolve(pair.refresh_token, pair.access_token) == AuthResolution(clear_cookies=True)


def test_expired_refresh_token_clears_cookies(services, clock, pair):
    clock.advance(days=181)
    assert services.access.resolve(pair.refresh_token, pair.access_token) == AuthResolution(clear_cookies=True)


def test_reissue_picks_up_new_roles(services, clock, pair, alice):
    services.roles.set_roles(alice, [Role(Scope.STORAGE, Level.EDIT)])
    clock.advance(minutes=16)
    resolution = services.access.resolve(pair.refresh_token, pair.access_token)
    assert Role(Scope.STORAGE, Level.EDIT) in resolution.identity.roles


# ---------------------------------------------------------------------------
# sign_out
# ---------------------------------------------------------------------------


def test_sign_out_invalidates_session(services, pair):
    services.access.sign_out(pair.refresh_token)
    assert not services.sessions.is_valid(services.tokens.session_id_of(pair.refresh_token))


@pytest.mark.parametrize("token", [None, "", "garbage"])
def test_sign_out_ignores_unusable_tokens(services, token):
    services.access.sign_out(token)


# ---------------------------------------------------------------------------
# AuthContext
# ---------------------------------------------------------------------------


def test_anonymous_context(services):
    ctx = services.access.context(ANONYMOUS)
    assert not ctx.is_logged_in()
    assert ctx.current_user_id() is None
    assert ctx.current_username() is None
    assert not ctx.verify_role(Scope.MEDIA, Level.NONE)
    with pytest.raises(Unauthorized):
        ctx.require_role(Scope.MEDIA, Level.VIEW)


def test_logged_in_context(services, pair, alice):
    ctx = services.access.context(services.access.resolve(pair.refresh_token, pair.access_token))
    assert ctx.is_logged_in()
    assert ctx.current_user_id() == alice
    assert ctx.current_username() == "alice"
    assert ctx.verify_role(Scope.MEDIA, Level.VIEW)
    assert not ctx.verify_role(Scope.MEDIA, Level.EDIT)
    assert ctx.require_role(Scope.MEDIA, Level.VIEW).user_id == alice


def test_verify_role_sees_revocation_immediately(services, pair, alice):
    ctx = services.access.context(services.access.resolve(pair.refresh_token, pair.access_token))
    services.roles.set_roles(alice, [Role(Scope.MEDIA, Level.NONE)])

    # The identity still carries the stale claim; the check does not.
    assert Role(Scope.MEDIA, Level.VIEW) in ctx.identity.roles
    assert not ctx.verify_role(Scope.MEDIA, Level.VIEW)
    with pytest.raises(Unauthorized):
        ctx.require_role(Scope.MEDIA, Level.VIEW)

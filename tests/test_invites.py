"""
tests/test_invites.py -- InviteLedger: single consumption, quotas, registration workflows.
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from auth.db import to_iso
from auth.errors import DuplicateUsername, InvalidOrExpiredInvite, NoInvitesRemaining
from auth.invites import generate_invite_url
from auth.models import InviteCount, Level, Role, Scope, UnlimitedInvites
from auth.schema import invites as invites_table
from auth.schema import users as users_table


@pytest.fixture
def inviter(make_user) -> str:
    return make_user("inviter")


def _insert_invite(engine, invite_id: str, created_by: str, clock) -> None:
    with engine.begin() as conn:
        conn.execute(
            invites_table.insert().values(
                invite_id=invite_id,
                created_by_user_id=created_by,
                created_at=to_iso(clock()),
            )
        )


def _user_count(engine) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(users_table)).scalar()


# ---------------------------------------------------------------------------
# Registration with a code
# ---------------------------------------------------------------------------


def test_register_twice_with_same_code(services, engine, clock, inviter):
    _insert_invite(engine, "inv_abc", inviter, clock)

    user_id = services.invites.register_with_invite("inv_abc", "alice", "secret123")
    assert services.credentials.verify_login("alice", "secret123") == user_id

    with pytest.raises(InvalidOrExpiredInvite):
        services.invites.register_with_invite("inv_abc", "alice", "secret123")


def test_second_registrant_with_spent_code_is_rejected(services, inviter):
    code = services.invites.create_invite(inviter)
    services.invites.register_with_invite(code, "alice", "secret123")
    with pytest.raises(InvalidOrExpiredInvite):
        services.invites.register_with_invite(code, "bob", "hunter22")
    assert services.credentials.get_user_id_by_username("bob") is None


def test_registration_grants_starting_invites_and_records_inviter(services, inviter):
    code = services.invites.create_invite(inviter)
    user_id = services.invites.register_with_invite(code, "alice", "secret123")

    assert services.invites.remaining_invites(user_id) == InviteCount(services.invites.starting_invites)
    assert services.credentials.get_user(user_id).invite_id == code
    assert services.credentials.invited_by(user_id) == inviter


def test_registered_user_has_no_roles(services, inviter):
    code = services.invites.create_invite(inviter)
    user_id = services.invites.register_with_invite(code, "alice", "secret123")
    assert all(r.level == Level.NONE for r in services.roles.get_roles(user_id))


def test_failed_registration_rolls_everything_back(services, engine, inviter, make_user):
    make_user("alice")
    code = services.invites.create_invite(inviter)
    users_before = _user_count(engine)

    with pytest.raises(DuplicateUsername):
        services.invites.register_with_invite(code, "alice", "secret123")

    assert _user_count(engine) == users_before
    assert services.invites.validate_invite_code(code) == inviter
    assert services.invites.remaining_invites(inviter) == InviteCount(1)


def test_unknown_code(services):
    with pytest.raises(InvalidOrExpiredInvite):
        services.invites.register_with_invite("inv_nope", "alice", "secret123")


# ---------------------------------------------------------------------------
# Single-invite primitives
# ---------------------------------------------------------------------------


def test_consume_succeeds_exactly_once(services, inviter, make_user):
    code = services.invites.create_invite(inviter)
    first = make_user("first")
    second = make_user("second")

    services.invites.consume_invite(code, first)
    for _ in range(3):
        with pytest.raises(InvalidOrExpiredInvite):
            services.invites.consume_invite(code, second)

    with pytest.raises(InvalidOrExpiredInvite):
        services.invites.validate_invite_code(code)
    (invite,) = services.invites.list_invites(inviter)
    assert invite.consumed
    assert invite.consumed_by_user_id == first


def test_validate_returns_creator(services, inviter):
    code = services.invites.create_invite(inviter)
    assert services.invites.validate_invite_code(code) == inviter


def test_list_invites_newest_first(services, clock, inviter):
    older = services.invites.create_invite(inviter)
    clock.advance(minutes=1)
    newer = services.invites.create_invite(inviter)
    assert [i.id for i in services.invites.list_invites(inviter)] == [newer, older]


# ---------------------------------------------------------------------------
# Quota
# ---------------------------------------------------------------------------


def test_remaining_counts_unconsumed_only(services, inviter):
    services.invites.set_remaining_invites(inviter, 2)
    code = services.invites.get_user_invite_id(inviter)
    services.invites.register_with_invite(code, "alice", "secret123")
    assert services.invites.remaining_invites(inviter) == InviteCount(1)


def test_user_management_edit_is_unlimited(services, make_user):
    admin = make_user("admin", roles=[Role(Scope.USER_MANAGEMENT, Level.EDIT)])
    viewer = make_user("viewer", roles=[Role(Scope.USER_MANAGEMENT, Level.VIEW)])
    assert services.invites.remaining_invites(admin) == UnlimitedInvites()
    assert services.invites.remaining_invites(viewer) == InviteCount(0)


def test_set_remaining_is_a_destructive_reset(services, inviter):
    services.invites.set_remaining_invites(inviter, 4)
    spent = services.invites.get_user_invite_id(inviter)
    services.invites.register_with_invite(spent, "alice", "secret123")
    before = {i.id for i in services.invites.list_invites(inviter) if not i.consumed}

    services.invites.set_remaining_invites(inviter, 2)

    after = services.invites.list_invites(inviter)
    unconsumed = {i.id for i in after if not i.consumed}
    assert len(unconsumed) == 2
    assert not unconsumed & before
    assert [i.id for i in after if i.consumed] == [spent]


def test_set_remaining_to_zero(services, inviter):
    services.invites.set_remaining_invites(inviter, 3)
    services.invites.set_remaining_invites(inviter, 0)
    assert services.invites.count_unconsumed(inviter) == 0


def test_set_remaining_rejects_negative(services, inviter):
    with pytest.raises(ValueError):
        services.invites.set_remaining_invites(inviter, -1)


# ---------------------------------------------------------------------------
# Administrative creation and share links
# ---------------------------------------------------------------------------


def test_invite_user_without_invites_or_grant(services, inviter):
    with pytest.raises(NoInvitesRemaining):
        services.invites.invite_user(inviter, "alice", "secret123")
    assert services.credentials.get_user_id_by_username("alice") is None


def test_invite_user_spends_one_invite(services, inviter):
    services.invites.set_remaining_invites(inviter, 2)
    user_id = services.invites.invite_user(inviter, "alice", "secret123")
    assert services.invites.remaining_invites(inviter) == InviteCount(1)
    assert services.credentials.invited_by(user_id) == inviter


def test_invite_user_unlimited_mints_on_demand(services, make_user):
    admin = make_user("admin", roles=[Role(Scope.USER_MANAGEMENT, Level.EDIT)])
    user_id = services.invites.invite_user(admin, "alice", "secret123")
    assert services.credentials.invited_by(user_id) == admin
    assert services.invites.count_unconsumed(admin) == 0


def test_get_user_invite_id_without_invites(services, inviter):
    with pytest.raises(NoInvitesRemaining):
        services.invites.get_user_invite_id(inviter)


def test_get_user_invite_id_reuses_unused_code(services, inviter):
    services.invites.set_remaining_invites(inviter, 1)
    assert services.invites.get_user_invite_id(inviter) == services.invites.get_user_invite_id(inviter)


@pytest.mark.parametrize(
    "host,expected",
    [
        ("localhost:8000", "http://localhost:8000/auth/invite/inv_1"),
        ("127.0.0.1", "http://127.0.0.1/auth/invite/inv_1"),
        ("example.com", "https://example.com/auth/invite/inv_1"),
    ],
)
def test_generate_invite_url(host, expected):
    assert generate_invite_url(host, "inv_1") == expected

"""
tests/test_api_admin.py -- Integration tests for /api/v1/admin/users*.

Covers:
  - 401 for anonymous callers, 403 without the user-management grant
  - View vs Edit gating and immediate effect of a revoked grant
  - create, detail, role updates, invite reset, forced logout, soft delete
"""

from __future__ import annotations

import pytest

from auth.models import Level, Role, Scope

ADMIN_USERNAME = "testadmin"


@pytest.fixture
def bob_id(admin_client) -> str:
    resp = admin_client.post("/api/v1/admin/users", json={"username": "bob", "password": "secret123"})
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.fixture
def viewer_client(api_client, api_services, login):
    api_services.credentials.create_user(
        "viewer", "secret123", initial_roles=[Role(Scope.USER_MANAGEMENT, Level.VIEW)]
    )
    login(api_client, "viewer", "secret123")
    return api_client


# ---------------------------------------------------------------------------
# Gating
# ---------------------------------------------------------------------------


def test_anonymous_is_401(api_client):
    resp = api_client.get("/api/v1/admin/users")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_user_without_grant_is_403(api_client, api_services, login):
    api_services.credentials.create_user("plain", "secret123")
    login(api_client, "plain", "secret123")
    resp = api_client.get("/api/v1/admin/users")
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"
    assert resp.json()["error"]["message"] == "User Management access at View level is required."


def test_viewer_can_list_but_not_create(viewer_client):
    assert viewer_client.get("/api/v1/admin/users").status_code == 200
    resp = viewer_client.post("/api/v1/admin/users", json={"username": "x", "password": "secret123"})
    assert resp.status_code == 403


def test_revoked_grant_applies_on_next_request(viewer_client, api_services):
    viewer_id = api_services.credentials.get_user_id_by_username("viewer")
    api_services.roles.set_roles(viewer_id, [Role(Scope.USER_MANAGEMENT, Level.NONE)])
    assert viewer_client.get("/api/v1/admin/users").status_code == 403


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def test_list_users(admin_client, bob_id):
    users = {u["username"]: u for u in admin_client.get("/api/v1/admin/users").json()}
    assert set(users) == {ADMIN_USERNAME, "bob"}
    assert users[ADMIN_USERNAME]["active_sessions"] == 1
    assert users["bob"]["last_login"] is None


def test_create_user_returns_detail(admin_client, bob_id):
    detail = admin_client.get(f"/api/v1/admin/users/{bob_id}").json()
    assert detail["username"] == "bob"
    assert detail["invited_by_username"] == ADMIN_USERNAME
    assert detail["invites"] == {"unlimited": False, "remaining": 5}
    assert detail["sessions"] == []
    assert all(r["level"] == "none" for r in detail["roles"])


def test_create_duplicate_user(admin_client, bob_id):
    resp = admin_client.post("/api/v1/admin/users", json={"username": "bob", "password": "secret123"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "username_taken"


def test_create_user_short_password(admin_client):
    resp = admin_client.post("/api/v1/admin/users", json={"username": "bob", "password": "short"})
    assert resp.status_code == 422


def test_unknown_user_is_404(admin_client):
    resp = admin_client.get("/api/v1/admin/users/user_missing")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_set_roles(admin_client, bob_id):
    resp = admin_client.put(
        f"/api/v1/admin/users/{bob_id}/roles",
        json={"roles": [{"scope": "storage", "level": "edit"}, {"scope": "media", "level": "view"}]},
    )
    assert resp.status_code == 200
    levels = {r["scope"]: r["level"] for r in resp.json()["roles"]}
    assert levels == {"user_management": "none", "dangerous_sql": "none", "storage": "edit", "media": "view"}


@pytest.mark.parametrize(
    "body",
    [{"roles": []}, {"roles": [{"scope": "kitchen", "level": "edit"}]}, {"roles": [{"scope": "storage", "level": 7}]}],
)
def test_set_roles_validation(admin_client, bob_id, body):
    assert admin_client.put(f"/api/v1/admin/users/{bob_id}/roles", json=body).status_code == 422


def test_reset_invites(admin_client, bob_id):
    resp = admin_client.put(f"/api/v1/admin/users/{bob_id}/invites", params={"to": 2})
    assert resp.status_code == 200
    assert resp.json() == {"remaining": 2}
    detail = admin_client.get(f"/api/v1/admin/users/{bob_id}").json()
    assert detail["invites"] == {"unlimited": False, "remaining": 2}


def test_reset_invites_rejects_negative(admin_client, bob_id):
    assert admin_client.put(f"/api/v1/admin/users/{bob_id}/invites", params={"to": -1}).status_code == 422


def test_invalidate_sessions(admin_client, api_services, bob_id):
    api_services.access.sign_in("bob", "secret123")
    api_services.access.sign_in("bob", "secret123")

    resp = admin_client.delete(f"/api/v1/admin/users/{bob_id}/sessions")

    assert resp.status_code == 200
    assert resp.json() == {"invalidated": 2}
    assert all(info.expired for info in api_services.sessions.list_for_user(bob_id))


def test_delete_user(admin_client, api_services, bob_id):
    assert admin_client.delete(f"/api/v1/admin/users/{bob_id}").status_code == 204
    assert admin_client.get(f"/api/v1/admin/users/{bob_id}").status_code == 404
    assert admin_client.delete(f"/api/v1/admin/users/{bob_id}").status_code == 404
    assert api_services.credentials.get_user_id_by_username("bob") is None


def test_cannot_delete_self(admin_client, api_services):
    admin_id = api_services.credentials.get_user_id_by_username(ADMIN_USERNAME)
    resp = admin_client.delete(f"/api/v1/admin/users/{admin_id}")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "self_deletion"


def test_tombstone_username_cannot_block_deletion(admin_client, api_services, login):
    admin_id = api_services.credentials.get_user_id_by_username(ADMIN_USERNAME)
    mallory_id = api_services.invites.invite_user(admin_id, "mallory", "secret123")
    code = api_services.invites.get_user_invite_id(mallory_id)

    admin_client.cookies.clear()
    resp = admin_client.post(
        f"/api/v1/auth/invite/{code}",
        json={"username": f"deleted:{mallory_id}", "password": "secret123", "confirm_password": "secret123"},
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "username_taken"

    login(admin_client, ADMIN_USERNAME, "testpass123")
    assert admin_client.delete(f"/api/v1/admin/users/{mallory_id}").status_code == 204

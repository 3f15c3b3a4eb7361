"""
api/routes/v1/admin.py -- User management endpoints.

Routes:
  GET    /api/v1/admin/users                  -- list users (View)
  POST   /api/v1/admin/users                  -- create a user, spending one of the caller's invites (Edit)
  GET    /api/v1/admin/users/{id}             -- user detail: roles, sessions, invites, inviter (View)
  DELETE /api/v1/admin/users/{id}/sessions    -- force logout everywhere (Edit)
  PUT    /api/v1/admin/users/{id}/invites?to= -- reset unused invites to exactly N (Edit)
  PUT    /api/v1/admin/users/{id}/roles       -- set role grants (Edit)
  DELETE /api/v1/admin/users/{id}             -- soft delete; not yourself (Edit)

Every route is gated on the user-management scope. The role check reads the
live Role Store, so a revoked grant takes effect on the next request rather
than at the next access-token refresh.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import (
    InviteAllowanceModel,
    InvitesResetResponse,
    RoleModel,
    RolesUpdate,
    SessionResponse,
    SessionsInvalidatedResponse,
    UserCreate,
    UserDetailResponse,
    UserSummaryResponse,
)
from auth.dependencies import get_auth_services, require_role
from auth.errors import UserNotFound
from auth.models import Identity, Level, Scope, UserDetail
from auth.services import AuthServices

# Auth policy:
# - GET routes:             Scope.USER_MANAGEMENT at Level.VIEW
# - POST / PUT / DELETE:    Scope.USER_MANAGEMENT at Level.EDIT
router = APIRouter()

_can_view = require_role(Scope.USER_MANAGEMENT, Level.VIEW)
_can_edit = require_role(Scope.USER_MANAGEMENT, Level.EDIT)


def _require_active_user(services: AuthServices, user_id: str) -> None:
    user = services.credentials.get_user(user_id)
    if user is None or user.deleted:
        raise UserNotFound(f"No active user with id {user_id}.")


def _detail_to_response(detail: UserDetail) -> UserDetailResponse:
    return UserDetailResponse(
        id=detail.user.id,
        username=detail.user.username,
        created_at=detail.user.created_at,
        roles=[RoleModel.from_domain(r) for r in detail.roles],
        sessions=[SessionResponse.from_domain(s) for s in detail.sessions],
        invites=InviteAllowanceModel.from_domain(detail.allowance),
        invited_by_user_id=detail.invited_by_user_id,
        invited_by_username=detail.invited_by_username,
    )


@router.get("/admin/users", response_model=list[UserSummaryResponse])
def list_users(request: Request, identity: Identity = Depends(_can_view)) -> list[UserSummaryResponse]:
    users = get_auth_services(request).credentials.list_users()
    return [
        UserSummaryResponse(
            id=u.id,
            username=u.username,
            created_at=u.created_at,
            last_login=u.last_login,
            active_sessions=u.active_sessions,
        )
        for u in users
    ]


@router.post("/admin/users", response_model=UserDetailResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    identity: Identity = Depends(_can_edit),
) -> UserDetailResponse:
    """Create an account on behalf of someone. Consumes one of the caller's invites."""
    services = get_auth_services(request)
    user_id = services.invites.invite_user(identity.user_id, body.username, body.password)
    return _detail_to_response(services.user_detail(user_id))


@router.get("/admin/users/{user_id}", response_model=UserDetailResponse)
def get_user(request: Request, user_id: str, identity: Identity = Depends(_can_view)) -> UserDetailResponse:
    return _detail_to_response(get_auth_services(request).user_detail(user_id))


@router.delete("/admin/users/{user_id}/sessions", response_model=SessionsInvalidatedResponse)
def invalidate_sessions(
    request: Request,
    user_id: str,
    identity: Identity = Depends(_can_edit),
) -> SessionsInvalidatedResponse:
    services = get_auth_services(request)
    _require_active_user(services, user_id)
    return SessionsInvalidatedResponse(invalidated=services.sessions.invalidate_all_for_user(user_id))


@router.put("/admin/users/{user_id}/invites", response_model=InvitesResetResponse)
def reset_invites(
    request: Request,
    user_id: str,
    to: int = Query(default=0, ge=0, le=1000),
    identity: Identity = Depends(_can_edit),
) -> InvitesResetResponse:
    """Destructive reset: delete the user's unused invites, then mint exactly `to` new ones."""
    services = get_auth_services(request)
    _require_active_user(services, user_id)
    services.invites.set_remaining_invites(user_id, to)
    return InvitesResetResponse(remaining=to)


@router.put("/admin/users/{user_id}/roles", response_model=UserDetailResponse)
def set_roles(
    request: Request,
    user_id: str,
    body: RolesUpdate,
    identity: Identity = Depends(_can_edit),
) -> UserDetailResponse:
    services = get_auth_services(request)
    _require_active_user(services, user_id)
    services.roles.set_roles(user_id, [grant.to_domain() for grant in body.roles])
    return _detail_to_response(services.user_detail(user_id))


@router.delete("/admin/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: str, identity: Identity = Depends(_can_edit)) -> Response:
    if user_id == identity.user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    get_auth_services(request).credentials.soft_delete_user(user_id)
    return Response(status_code=204)

"""
api/routes/v1/account.py -- Self-service account endpoints.

Routes:
  GET  /api/v1/account                  -- profile, live role grants, invite allowance
  POST /api/v1/account/change-password  -- verify current password, set a new one
  GET  /api/v1/account/invite-link      -- an unused invite code and its shareable URL
  GET  /api/v1/account/invites          -- every invite this user created, newest first
  GET  /api/v1/account/sessions         -- this user's sessions, newest first

All routes require auth. A password change leaves existing sessions valid.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    AccountResponse,
    ChangePasswordRequest,
    InviteAllowanceModel,
    InviteLinkResponse,
    InviteResponse,
    RoleModel,
    SessionResponse,
)
from auth.dependencies import get_auth_services, get_identity
from auth.errors import UserNotFound
from auth.invites import generate_invite_url
from auth.models import Identity, Level

# Where the registration endpoint is mounted; the shared link points at it.
_INVITE_PATH = "/api/v1/auth/invite"

router = APIRouter()


@router.get("/account", response_model=AccountResponse)
def get_account(request: Request, identity: Identity = Depends(get_identity)) -> AccountResponse:
    services = get_auth_services(request)
    user = services.credentials.get_user(identity.user_id)
    if user is None or user.deleted:
        raise UserNotFound(f"No active user with id {identity.user_id}.")
    roles = services.roles.get_roles(user.id)
    return AccountResponse(
        user_id=user.id,
        username=user.username,
        created_at=user.created_at,
        roles=[RoleModel.from_domain(r) for r in roles if r.level > Level.NONE],
        invites=InviteAllowanceModel.from_domain(services.invites.remaining_invites(user.id)),
    )


@router.post("/account/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_identity),
) -> dict[str, str]:
    get_auth_services(request).credentials.change_password(
        identity.user_id,
        body.current_password,
        body.new_password,
        body.new_password_confirm,
    )
    return {"message": "Password changed."}


@router.get("/account/invite-link", response_model=InviteLinkResponse)
def invite_link(request: Request, identity: Identity = Depends(get_identity)) -> InviteLinkResponse:
    """Return an unused invite code. 403 no_invites_remaining when the quota is spent."""
    code = get_auth_services(request).invites.get_user_invite_id(identity.user_id)
    url = generate_invite_url(request.url.netloc, code, path_prefix=_INVITE_PATH)
    return InviteLinkResponse(invite_code=code, url=url)


@router.get("/account/invites", response_model=list[InviteResponse])
def list_invites(request: Request, identity: Identity = Depends(get_identity)) -> list[InviteResponse]:
    invites = get_auth_services(request).invites.list_invites(identity.user_id)
    return [InviteResponse.from_domain(i) for i in invites]


@router.get("/account/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, identity: Identity = Depends(get_identity)) -> list[SessionResponse]:
    sessions = get_auth_services(request).sessions.list_for_user(identity.user_id)
    return [SessionResponse.from_domain(s) for s in sessions]

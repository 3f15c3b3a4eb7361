"""
api/routes/v1/auth.py -- Login, logout, identity and invite registration.

Routes:
  POST /api/v1/auth/login          -- password login; sets refresh + access cookies
  POST /api/v1/auth/logout         -- invalidates the session; clears cookies
  GET  /api/v1/auth/me             -- current identity (requires auth)
  GET  /api/v1/auth/invite/{code}  -- who issued this invite (anonymous only)
  POST /api/v1/auth/invite/{code}  -- register with the invite and sign in (anonymous only)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  Unknown username and wrong password produce the same "bad_credentials"
  response. Login and registration responses carry Cache-Control: no-store.
  Domain errors (DuplicateUsername, InvalidOrExpiredInvite, ...) are mapped to
  HTTP responses by the AuthError handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    InviteInfoResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    RegisterRequest,
    RoleModel,
)
from auth.access import AuthContext
from auth.dependencies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    delete_token_cookies,
    get_auth_context,
    get_auth_services,
    get_identity,
    set_token_cookie,
)
from auth.errors import InvalidCredentials, PasswordMismatch
from auth.models import Identity, Level, TokenPair
from auth.services import AuthServices
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:          public
# - POST /api/v1/auth/logout:         public -- a stale cookie still gets cleared
# - GET  /api/v1/auth/me:             requires auth (get_identity)
# - GET  /api/v1/auth/invite/{code}:  anonymous only
# - POST /api/v1/auth/invite/{code}:  anonymous only
router = APIRouter()


def _signed_in_response(services: AuthServices, pair: TokenPair, status_code: int = 200) -> JSONResponse:
    identity = services.tokens.identity_from_access_token(pair.access_token)
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            user_id=identity.user_id,
            username=identity.username,
            expires_in=_settings.access_token_expire_seconds,
        ).model_dump(),
    )
    set_token_cookie(resp, REFRESH_COOKIE, pair.refresh_token, _settings.refresh_token_expire_seconds)
    set_token_cookie(resp, ACCESS_COOKIE, pair.access_token, _settings.access_token_expire_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _reject_logged_in(ctx: AuthContext) -> None:
    if ctx.is_logged_in():
        raise HTTPException(
            status_code=409,
            detail={
                "code": "already_logged_in",
                "message": "You cannot redeem an invitation while logged in. Log out and try again.",
            },
        )


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_settings.login_rate_limit)  # below @router so the routed endpoint is the limited one
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Verify credentials, open a session and set both token cookies."""
    services = get_auth_services(request)
    try:
        pair = services.access.sign_in(body.username, body.password)
    except InvalidCredentials:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(
                error=ErrorDetail(code="bad_credentials", message="Invalid username or password.")
            ).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _signed_in_response(services, pair)


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Invalidate the session behind the refresh cookie and clear both cookies."""
    get_auth_services(request).access.sign_out(request.cookies.get(REFRESH_COOKIE))
    resp = JSONResponse(content={"message": "Logged out."})
    delete_token_cookies(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(identity: Identity = Depends(get_identity)) -> MeResponse:
    """Return the identity carried by the current access token."""
    return MeResponse(
        user_id=identity.user_id,
        username=identity.username,
        session_id=identity.session_id,
        roles=[RoleModel.from_domain(r) for r in identity.roles if r.level > Level.NONE],
    )


# ---------------------------------------------------------------------------
# Invite registration
# ---------------------------------------------------------------------------


@router.get("/auth/invite/{invite_code}", response_model=InviteInfoResponse)
def get_invite(
    request: Request,
    invite_code: str,
    ctx: AuthContext = Depends(get_auth_context),
) -> InviteInfoResponse:
    _reject_logged_in(ctx)
    services = get_auth_services(request)
    inviter_id = services.invites.validate_invite_code(invite_code)
    inviter = services.credentials.get_user(inviter_id)
    return InviteInfoResponse(
        invite_code=invite_code,
        invited_by=inviter.username if inviter else "",
    )


@router.post("/auth/invite/{invite_code}", response_model=LoginResponse, status_code=201)
def register_with_invite(
    request: Request,
    invite_code: str,
    body: RegisterRequest,
    ctx: AuthContext = Depends(get_auth_context),
) -> JSONResponse:
    """Create an account with the invite, then sign the new user in."""
    _reject_logged_in(ctx)
    if body.password != body.confirm_password:
        raise PasswordMismatch("Passwords do not match.")
    services = get_auth_services(request)
    services.invites.register_with_invite(invite_code, body.username, body.password)
    pair = services.access.sign_in(body.username, body.password)
    return _signed_in_response(services, pair, status_code=201)

"""
auth/dependencies.py -- FastAPI Depends() helpers and cookie handling.

Two HttpOnly cookies carry the tokens:
  refresh_token -- long-lived, only ever used to mint access tokens.
  access_token  -- short-lived, carries identity and role claims.
Both are SameSite=Strict, path "/", Secure when Settings.secure_cookies is on,
and each max-age matches its token's lifetime.

The auth-refresh middleware in api/main.py resolves the cookies once per
request and stores the AuthResolution on request.state.auth. The helpers
below only read that result:

  get_auth_context() -- the AuthContext for the request (anonymous if none).
  get_identity()     -- wraps it and raises HTTP 401 if not logged in.
  require_role()     -- dependency factory; 401 if anonymous. Otherwise defers to
                        AuthContext.require_role(), whose Unauthorized becomes
                        a 403 in api/main.py.

Layer rule: may import from fastapi (this module is part of the FastAPI
dependency injection system). No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, Response

from auth.access import ANONYMOUS, AuthContext, AuthResolution
from auth.models import Identity, Level, Scope
from auth.services import AuthServices
from core.config import get_settings

REFRESH_COOKIE = "refresh_token"
ACCESS_COOKIE = "access_token"


def set_token_cookie(response: Response, name: str, token: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="strict",
        secure=get_settings().secure_cookies,
    )


def delete_token_cookies(response: Response) -> None:
    """Expire both token cookies on the client."""
    secure = get_settings().secure_cookies
    for name in (REFRESH_COOKIE, ACCESS_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, samesite="strict", secure=secure)


def get_auth_services(request: Request) -> AuthServices:
    return request.app.state.auth


def get_auth_context(request: Request) -> AuthContext:
    resolution: AuthResolution = getattr(request.state, "auth", ANONYMOUS)
    return get_auth_services(request).access.context(resolution)


def get_identity(ctx: AuthContext = Depends(get_auth_context)) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_identity)): ...
    """
    if ctx.identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return ctx.identity


def require_role(scope: Scope, minimum: Level) -> Callable[..., Identity]:
    """Build a dependency that requires scope at minimum level.

    Usage:
        @router.get("/admin/users")
        def route(identity: Identity = Depends(require_role(Scope.USER_MANAGEMENT, Level.VIEW))): ...
    """

    def dependency(ctx: AuthContext = Depends(get_auth_context)) -> Identity:
        get_identity(ctx)
        return ctx.require_role(scope, minimum)

    return dependency

"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access token is read from the Authorization: Bearer header only. The
refresh token never authenticates a request; it is only accepted by the
refresh endpoint.

get_principal() is the cheap stateless check: signature, expiry and claims.
Use it on read paths.

get_fresh_principal() is the strong check: it additionally re-reads the
account so the role in force is the one stored now, not the one signed into
the token. Use it on every state-mutating route.

require_role() wraps get_fresh_principal() and raises 403 below a minimum rank.

Every failure raises AuthError; api/main.py renders it with the status and
public message of its kind.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from auth.engine import AuthenticationEngine
from auth.errors import AuthError, AuthErrorKind
from auth.models import Principal
from auth.roles import Role


def get_engine(request: Request) -> AuthenticationEngine:
    return request.app.state.auth_engine


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise AuthError(AuthErrorKind.TOKEN_INVALID, "missing bearer token")
    return auth_header[7:].strip()


def get_principal(request: Request) -> Principal:
    """Require a valid access token. Stateless; use on read-only routes.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    return get_engine(request).authorize(_bearer_token(request), strong=False)


def get_fresh_principal(request: Request) -> Principal:
    """Require a valid access token AND re-read the account. Use on mutating routes."""
    return get_engine(request).authorize(_bearer_token(request), strong=True)


def require_role(minimum: Role) -> Callable[..., Principal]:
    """Build a dependency that requires at least ``minimum`` rank (strong check).

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(principal: Principal = Depends(require_role(Role.MANAGER))): ...
    """

    def dependency(principal: Principal = Depends(get_fresh_principal)) -> Principal:
        if principal.role < minimum:
            raise AuthError(AuthErrorKind.INSUFFICIENT_RANK, f"requires {minimum.value}")
        return principal

    return dependency

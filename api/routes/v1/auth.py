"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST  /api/v1/auth/login        -- password login; access token + refresh cookie
  POST  /api/v1/auth/register     -- create USER account; access token + refresh cookie
  POST  /api/v1/auth/refresh      -- rotate refresh token (cookie or body); new pair
  POST  /api/v1/auth/logout       -- revoke every refresh record; clear cookie
  GET   /api/v1/auth/me           -- principal from the access token (stateless)
  GET   /api/v1/auth/revalidate   -- fresh access token reflecting the current role
  PATCH /api/v1/auth/password     -- change password; revokes every refresh record

Security:
  Login uses AuthenticationEngine.login(), which includes timing equalization.
  Do NOT inline a store lookup plus a password check here.

  Responses that carry tokens set Cache-Control: no-store.

  A failed refresh clears the refresh cookie so the client drops the dead token
  and goes back to the login form.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    MessageResponse,
    PasswordUpdateRequest,
    PrincipalResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from auth.dependencies import get_engine, get_fresh_principal, get_principal
from auth.errors import AuthError, AuthErrorKind
from auth.models import LoginResult, Principal
from auth.tokens import clear_refresh_cookie, set_refresh_cookie
from core.config import get_settings

# Auth policy:
# - POST  /auth/login, /auth/register, /auth/refresh: public
# - GET   /auth/me:                 stateless access token (get_principal)
# - POST  /auth/logout:             strong check (get_fresh_principal)
# - GET   /auth/revalidate:         strong check (get_fresh_principal)
# - PATCH /auth/password:           strong check (get_fresh_principal)
router = APIRouter()


def _session_response(result: LoginResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=TokenResponse.from_result(result).model_dump(mode="json"))
    set_refresh_cookie(resp, result.tokens.refresh_token, get_settings())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with login and password.

    Wrong login and wrong password return the same 401 "bad_credentials" error
    so the response does not reveal whether an account exists.
    """
    result = get_engine(request).login(body.login, body.password)
    return _session_response(result)


@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a USER account and log it in."""
    result = get_engine(request).register(body.login, body.password)
    resp = _session_response(result, status_code=201)
    resp.headers["Location"] = f"/api/v1/users/{result.principal.login}"
    return resp


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = Body(default=None)) -> JSONResponse:
    """Exchange a refresh token for a new access token and a rotated refresh cookie.

    The cookie wins when both the cookie and a body token are present.
    """
    settings = get_settings()
    raw_token = request.cookies.get(settings.refresh_cookie_name) or (body.refresh_token if body else None)
    try:
        if not raw_token:
            raise AuthError(AuthErrorKind.REFRESH_NOT_FOUND, "no refresh token presented")
        result = get_engine(request).refresh(raw_token)
    except AuthError as exc:
        public = exc.public
        resp = JSONResponse(
            status_code=public.status_code,
            content=ErrorResponse(error=ErrorDetail(code=public.code, message=public.message)).model_dump(),
        )
        clear_refresh_cookie(resp, settings)
        resp.headers["Cache-Control"] = "no-store"
        return resp
    return _session_response(result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_fresh_principal)) -> JSONResponse:
    """Revoke every refresh record of the caller and clear the cookie.

    The access token stays valid until it expires; it is short-lived.
    """
    get_engine(request).logout(principal.login)
    resp = JSONResponse(content={"message": "Logged out."})
    clear_refresh_cookie(resp, get_settings())
    return resp


@router.get("/auth/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(get_principal)) -> PrincipalResponse:
    """Return the identity carried by the access token."""
    return PrincipalResponse.from_principal(principal)


@router.get("/auth/revalidate", response_model=TokenResponse)
def revalidate(request: Request, principal: Principal = Depends(get_fresh_principal)) -> JSONResponse:
    """Re-read the account and issue a new access token. The refresh cookie is untouched."""
    engine = get_engine(request)
    fresh, access_token = engine.revalidate(principal)
    content = TokenResponse(
        access_token=access_token,
        expires_in=engine.access_expires_in,
        principal=PrincipalResponse.from_principal(fresh),
    ).model_dump(mode="json")
    resp = JSONResponse(content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.patch("/auth/password", status_code=204)
def update_password(
    request: Request,
    body: PasswordUpdateRequest,
    principal: Principal = Depends(get_fresh_principal),
) -> Response:
    """Change the caller's password and end every session, including this one's refresh token."""
    get_engine(request).change_password(principal.login, body.old_password, body.new_password)
    resp = Response(status_code=204)
    clear_refresh_cookie(resp, get_settings())
    return resp

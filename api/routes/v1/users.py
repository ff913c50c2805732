"""
api/routes/v1/users.py -- Privileged account mutations.

Routes:
  GET    /api/v1/users                          -- list active accounts (MANAGER+)
  POST   /api/v1/users/{login}/roles/{operation} -- promote / downgrade / revoke
  DELETE /api/v1/users/{login}                  -- deactivate (soft delete)

Every route here mutates state or exposes other accounts, so every route uses
the strong principal check: the caller's role is re-read from the store before
the rank guard runs. Rank rules live in auth/roles.py; this module only maps
HTTP onto AuthenticationEngine.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import PrincipalResponse
from auth.dependencies import get_engine, get_fresh_principal, require_role
from auth.models import Principal
from auth.roles import Role, RoleOperation

router = APIRouter()


@router.get("/users", response_model=list[PrincipalResponse])
def list_users(
    request: Request,
    principal: Principal = Depends(require_role(Role.MANAGER)),
) -> list[PrincipalResponse]:
    users = get_engine(request).users.list_users()
    return [PrincipalResponse.from_principal(Principal.from_user(u)) for u in users]


@router.post("/users/{login}/roles/{operation}", response_model=PrincipalResponse)
def change_role(
    request: Request,
    login: str,
    operation: RoleOperation,
    principal: Principal = Depends(get_fresh_principal),
) -> PrincipalResponse:
    """Apply a named role operation to ``login``.

    403 when the caller may not act on the target's rank or the operation runs
    the wrong way; 409 when the target already holds the requested role.
    """
    updated = get_engine(request).change_role(principal, login, operation)
    return PrincipalResponse.from_principal(updated)


@router.delete("/users/{login}", response_model=PrincipalResponse)
def deactivate_user(
    request: Request,
    login: str,
    principal: Principal = Depends(get_fresh_principal),
) -> PrincipalResponse:
    """Deactivate ``login`` and revoke its refresh records."""
    deactivated = get_engine(request).deactivate(principal, login)
    return PrincipalResponse.from_principal(deactivated)

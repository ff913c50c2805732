"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the engine
do the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from auth.roles import Role, permissions_for


@dataclass
class User:
    """An account as held by the Credential Store.

    is_active=False is the soft-delete marker. Deactivated accounts stay in the
    table (logins are never reused) but authenticate as if they did not exist.
    """

    login: str
    role: Role = Role.USER
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Principal:
    """The authenticated identity a request acts as.

    Ephemeral: rebuilt from verified access-token claims, or from a fresh
    User row on strong validation. Never persisted as such.
    """

    login: str
    role: Role
    permissions: tuple[str, ...] = ()

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(login=user.login, role=user.role, permissions=permissions_for(user.role))


@dataclass
class RefreshRecord:
    """Server-side state for one issued refresh token.

    Only the keyed hash of the token is stored. At most one record per
    owner_login has revoked=False at any time.
    """

    token_hash: str
    owner_login: str
    expires_at: datetime
    id: int | None = None
    revoked: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    principal: Principal
    tokens: TokenPair
    access_expires_in: int

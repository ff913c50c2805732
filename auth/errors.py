"""
auth/errors.py -- The single error type raised by the auth engine.

Every failure the engine can report is one AuthError carrying an
AuthErrorKind. The kind set is closed: callers branch on ``exc.kind`` rather
than on a class hierarchy, and the HTTP layer maps each kind to a fixed status
code, public code and public message through ``exc.status_code`` and
``exc.public``.

Information leakage:
  Kinds that an attacker could use as an oracle share one public code and
  message per family. A forged signature, a garbled token and a token without
  a role claim all render as "invalid_token"; every refresh failure renders as
  "invalid_refresh_token". The specific kind and the optional ``detail`` string
  are for server logs only.

Anything that is not an AuthError (SQLAlchemy errors, an unreachable
database) propagates unchanged and becomes a generic 500 at the API layer.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Optional


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    TOKEN_INVALID = "token_invalid"
    TOKEN_EXPIRED = "token_expired"
    REFRESH_NOT_FOUND = "refresh_not_found"
    REFRESH_EXPIRED = "refresh_expired"
    REFRESH_REVOKED = "refresh_revoked"
    ROLE_ALREADY_AT_TARGET = "role_already_at_target"
    INVALID_DIRECTION = "invalid_direction"
    INSUFFICIENT_RANK = "insufficient_rank"
    USER_NOT_FOUND = "user_not_found"
    LOGIN_TAKEN = "login_taken"


class PublicError(NamedTuple):
    """What a client is allowed to see for a given kind."""

    status_code: int
    code: str
    message: str


_INVALID_REFRESH = PublicError(401, "invalid_refresh_token", "Refresh token is invalid or has been revoked.")

_PUBLIC: dict[AuthErrorKind, PublicError] = {
    AuthErrorKind.INVALID_CREDENTIALS: PublicError(401, "bad_credentials", "Invalid login or password."),
    AuthErrorKind.TOKEN_INVALID: PublicError(401, "invalid_token", "Authentication required."),
    AuthErrorKind.TOKEN_EXPIRED: PublicError(401, "token_expired", "Access token has expired."),
    AuthErrorKind.REFRESH_NOT_FOUND: _INVALID_REFRESH,
    AuthErrorKind.REFRESH_EXPIRED: _INVALID_REFRESH,
    AuthErrorKind.REFRESH_REVOKED: _INVALID_REFRESH,
    AuthErrorKind.ROLE_ALREADY_AT_TARGET: PublicError(409, "conflict", "The user already holds the requested role."),
    AuthErrorKind.INVALID_DIRECTION: PublicError(403, "invalid_transition", "The user has lower rights than desired."),
    AuthErrorKind.INSUFFICIENT_RANK: PublicError(
        403, "forbidden", "You don't have the necessary rights to perform this action."
    ),
    AuthErrorKind.USER_NOT_FOUND: PublicError(404, "not_found", "User not found."),
    AuthErrorKind.LOGIN_TAKEN: PublicError(409, "conflict", "Login already exists."),
}


class AuthError(Exception):
    """Terminal failure of an auth operation. Never retried by the engine."""

    def __init__(self, kind: AuthErrorKind, detail: Optional[str] = None) -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail

    @property
    def public(self) -> PublicError:
        return _PUBLIC[self.kind]

    @property
    def status_code(self) -> int:
        return _PUBLIC[self.kind].status_code


"""
API request and response models for Gatekeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import LoginResult, Principal
from auth.roles import Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    Only the login is whitespace-stripped. Passwords are taken byte for byte,
    the same way the password-change body and the CLI take them. max_length
    keeps bcrypt input well clear of pathological sizes, and the password is
    never echoed back in validation errors of this model.
    """

    model_config = ConfigDict(hide_input_in_errors=True)

    login: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(hide_input_in_errors=True)

    login: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]
    password: str = Field(min_length=8, max_length=255)


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/auth/refresh when the cookie is not used."""

    model_config = ConfigDict(hide_input_in_errors=True)

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class PasswordUpdateRequest(BaseModel):
    model_config = ConfigDict(hide_input_in_errors=True)

    old_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=8, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PrincipalResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    role: Role
    permissions: list[str]

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(login=principal.login, role=principal.role, permissions=list(principal.permissions))


class TokenResponse(BaseModel):
    """Access token returned by login, register, refresh and revalidate.

    The refresh token is never part of a response body; it travels in the
    httpOnly refresh cookie only.
    """

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    principal: PrincipalResponse

    @classmethod
    def from_result(cls, result: LoginResult) -> "TokenResponse":
        return cls(
            access_token=result.tokens.access_token,
            expires_in=result.access_expires_in,
            principal=PrincipalResponse.from_principal(result.principal),
        )


class MessageResponse(BaseModel):
    message: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope for every non-2xx API response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

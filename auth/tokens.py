"""
auth/tokens.py -- Signing and parsing of access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. The signing key is the process-wide
       SECRET_KEY from core.config, read once and never rotated.

  Two token shapes with different lifetimes:
       access   sub, role, permissions, iat, exp (minutes). Self-contained,
                verified statelessly on the hot path.
       refresh  sub, iat, exp (days), jti. Deliberately minimal because its
                legitimacy is re-checked against the refresh registry on every
                use. jti makes two refresh tokens minted in the same second
                for the same subject distinct, and lets verify_refresh() reject
                an access token presented in its place.

  Verification order: signature, then expiry, then claim shape. python-jose
       checks the signature before it looks at any claim, so an expired token
       is only reported as expired once its signature is known to be good.
       Bad signature, garbled encoding and wrong claim shape are all
       TOKEN_INVALID so a forger learns nothing about which check failed.
       The signature segment must also be canonical base64url, so no two
       distinct strings verify as the same token.

  Refresh token hashing: HMAC-SHA256(SECRET_KEY, raw_token). Deterministic, so
       the registry can look records up by hash. A leaked database does not
       yield usable tokens without the key.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from auth.errors import AuthError, AuthErrorKind
from auth.models import Principal, TokenPair
from auth.roles import Role
from core.config import Settings

logger = logging.getLogger("gatekeeper.auth")

_ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Issues and verifies signed tokens. Pure CPU work, no storage."""

    def __init__(
        self,
        secret_key: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Clock = utc_now,
    ) -> None:
        if len(secret_key) < 32:
            raise ValueError("secret_key must be at least 32 characters.")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenCodec":
        return cls(
            secret_key=settings.secret_key,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, principal: Principal) -> str:
        now = self._clock()
        payload = {
            "sub": principal.login,
            "role": principal.role.value,
            "permissions": list(principal.permissions),
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_refresh(self, principal: Principal) -> str:
        token, _expires_at = self._issue_refresh(principal.login)
        return token

    def issue_pair(self, principal: Principal) -> TokenPair:
        refresh_token, refresh_expires_at = self._issue_refresh(principal.login)
        return TokenPair(
            access_token=self.issue_access(principal),
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
        )

    def _issue_refresh(self, subject: str) -> tuple[str, datetime]:
        now = self._clock()
        expires_at = now + self.refresh_ttl
        payload = {
            "sub": subject,
            "iat": now,
            "exp": expires_at,
            "jti": secrets.token_urlsafe(16),
        }
        # JWT exp has whole-second precision; report the value actually signed.
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM), expires_at.replace(microsecond=0)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> Principal:
        claims = self._decode(token)
        try:
            role = Role(claims["role"])
        except (KeyError, ValueError, TypeError):
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "missing or unknown role claim") from None
        permissions = claims.get("permissions")
        if not isinstance(permissions, list) or not all(isinstance(p, str) for p in permissions):
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "malformed permissions claim")
        return Principal(login=claims["sub"], role=role, permissions=tuple(permissions))

    def verify_refresh(self, token: str) -> str:
        """Return the subject of a valid refresh token."""
        claims = self._decode(token)
        if not isinstance(claims.get("jti"), str):
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "not a refresh token")
        return claims["sub"]

    def _decode(self, token: str) -> dict:
        _require_canonical_signature(token)
        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"require_sub": True, "require_exp": True, "require_iat": True},
            )
        except ExpiredSignatureError:
            raise AuthError(AuthErrorKind.TOKEN_EXPIRED) from None
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise AuthError(AuthErrorKind.TOKEN_INVALID, str(exc)) from None
        if not isinstance(claims.get("sub"), str) or not claims["sub"]:
            raise AuthError(AuthErrorKind.TOKEN_INVALID, "empty subject")
        return claims

    # ------------------------------------------------------------------
    # Refresh token hashing
    # ------------------------------------------------------------------

    def hash_refresh_token(self, raw_token: str) -> str:
        """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
        return hmac.new(
            self._secret_key.encode(),
            raw_token.encode(),
            hashlib.sha256,
        ).hexdigest()


def _require_canonical_signature(token: str) -> None:
    """Reject a signature segment that is not the canonical base64url of its bytes.

    43 characters carry 258 bits for a 256-bit HMAC, so the last character has
    slack bits that python-jose ignores. Without this check four different
    strings verify as the same signature.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return  # python-jose reports the malformed structure
    signature = parts[2]
    try:
        canonical = base64url_encode(base64url_decode(signature.encode("ascii"))).decode("ascii")
    except (binascii.Error, ValueError):
        raise AuthError(AuthErrorKind.TOKEN_INVALID, "undecodable signature") from None
    if canonical != signature:
        raise AuthError(AuthErrorKind.TOKEN_INVALID, "non-canonical signature encoding")


def set_refresh_cookie(response, token: str, settings: Settings, max_age: Optional[int] = None) -> None:
    """Write the refresh token as an httpOnly cookie scoped to the refresh endpoint.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    path: only the refresh endpoint ever receives it.
    max_age: matches the refresh token's exp.
    """
    response.set_cookie(
        settings.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        path=settings.refresh_cookie_path,
        max_age=max_age if max_age is not None else settings.refresh_token_expire_seconds,
    )


def clear_refresh_cookie(response, settings: Settings) -> None:
    response.delete_cookie(
        settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )

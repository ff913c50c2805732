"""
auth/credentials.py -- Password hashing and login/password verification.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). bcrypt's cost factor makes
       brute force expensive, and checkpw() compares in constant time.

  72-byte limit: bcrypt only looks at the first 72 bytes of a password and
       current releases raise instead of truncating. Both hashing and
       verification truncate the encoded password so the two always agree.

  Enumeration: an unknown login, a deactivated account, an account with no
       local password and a wrong password all fail with the same
       INVALID_CREDENTIALS error. bcrypt runs against _DUMMY_HASH when there is
       no real hash to check, so response time does not reveal whether a login
       exists.

  Plaintext handling: the password is only ever passed to bcrypt. It is never
       logged, stored, or attached to the raised error.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import AuthError, AuthErrorKind
from auth.models import Principal

if TYPE_CHECKING:
    from auth.store import CredentialStore

logger = logging.getLogger("gatekeeper.auth")

BCRYPT_ROUNDS = 12
_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at import so the first failed login is not measurably slower
# than later ones. Same cost factor as real hashes.
_DUMMY_HASH: str = hash_password("gatekeeper_timing_dummy")


class CredentialVerifier:
    """Checks a login/password pair against the Credential Store."""

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def verify(self, login: str, password: str) -> Principal:
        """Return the Principal for a valid pair, raise INVALID_CREDENTIALS otherwise.

        Read-only. Always runs exactly one bcrypt comparison.
        """
        user = self._store.find_active_by_login(login)
        if user is None or not user.hashed_password:
            # Equalize timing -- do NOT return early before running bcrypt
            verify_password(password, _DUMMY_HASH)
            logger.warning("Login failed for %r: unknown or inactive account", login)
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "unknown login")
        if not verify_password(password, user.hashed_password):
            logger.warning("Login failed for %r: password mismatch", login)
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "password mismatch")
        return Principal.from_user(user)

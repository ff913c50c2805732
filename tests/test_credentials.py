"""
tests/test_credentials.py -- Unit tests for auth/credentials.py.

Unknown login, wrong password and deactivated account must be
indistinguishable to the caller: same kind, same public code.
"""

from __future__ import annotations

import pytest

from auth.credentials import CredentialVerifier, hash_password, verify_password
from auth.errors import AuthError, AuthErrorKind
from auth.models import User
from auth.roles import Role, permissions_for


class TestPasswordHashing:
    def test_hash_verifies(self) -> None:
        hashed = hash_password("Secret123!", rounds=4)
        assert hashed != "Secret123!"
        assert verify_password("Secret123!", hashed)
        assert not verify_password("secret123!", hashed)

    def test_same_password_hashes_differently(self) -> None:
        assert hash_password("Secret123!", rounds=4) != hash_password("Secret123!", rounds=4)

    def test_long_password_does_not_raise(self) -> None:
        """bcrypt reads 72 bytes; longer input is truncated the same way on both sides."""
        long_password = "p" * 100
        hashed = hash_password(long_password, rounds=4)
        assert verify_password(long_password, hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("Secret123!", "not-a-bcrypt-hash") is False


class TestCredentialVerifier:
    def test_valid_pair_returns_principal(self, users, create_account) -> None:
        create_account("a@test.com", Role.MANAGER)
        principal = CredentialVerifier(users).verify("a@test.com", "Secret123!")
        assert principal.login == "a@test.com"
        assert principal.role is Role.MANAGER
        assert principal.permissions == permissions_for(Role.MANAGER)

    def test_wrong_password(self, users, create_account) -> None:
        create_account("a@test.com")
        with pytest.raises(AuthError) as exc_info:
            CredentialVerifier(users).verify("a@test.com", "wrong-password")
        assert exc_info.value.kind is AuthErrorKind.INVALID_CREDENTIALS

    def test_unknown_login_matches_wrong_password(self, users, create_account) -> None:
        create_account("a@test.com")
        verifier = CredentialVerifier(users)
        with pytest.raises(AuthError) as unknown:
            verifier.verify("nobody@test.com", "Secret123!")
        with pytest.raises(AuthError) as wrong:
            verifier.verify("a@test.com", "wrong-password")
        assert unknown.value.kind is wrong.value.kind is AuthErrorKind.INVALID_CREDENTIALS
        assert unknown.value.public == wrong.value.public

    def test_deactivated_account_rejected(self, users, create_account) -> None:
        create_account("a@test.com")
        users.set_active("a@test.com", False)
        with pytest.raises(AuthError) as exc_info:
            CredentialVerifier(users).verify("a@test.com", "Secret123!")
        assert exc_info.value.kind is AuthErrorKind.INVALID_CREDENTIALS

    def test_account_without_password_rejected(self, users) -> None:
        users.create_user(User(login="sso@test.com"))
        with pytest.raises(AuthError) as exc_info:
            CredentialVerifier(users).verify("sso@test.com", "")
        assert exc_info.value.kind is AuthErrorKind.INVALID_CREDENTIALS

    def test_password_never_in_error(self, users, create_account) -> None:
        create_account("a@test.com")
        with pytest.raises(AuthError) as exc_info:
            CredentialVerifier(users).verify("a@test.com", "hunter2-guess")
        assert "hunter2-guess" not in str(exc_info.value)
        assert "hunter2-guess" not in exc_info.value.public.message

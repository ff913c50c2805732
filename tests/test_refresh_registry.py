"""
tests/test_refresh_registry.py -- Tests for auth/refresh.py against a real SQLite store.

Covers:
  - store() leaves exactly one active record per subject
  - rotate() consumes the presented record and installs the replacement
  - replay of a consumed record, unknown record, expired record
  - two threads rotating the same record: exactly one wins
  - revoke_all() and purge_expired()
"""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from auth.errors import AuthError, AuthErrorKind
from auth.refresh import RefreshRegistry
from auth.store import RefreshTokenStore
from auth.tokens import utc_now

SUBJECT = "a@test.com"


def _hash(n: int) -> str:
    return f"{n:064x}"


def _expiry(days: int = 30):
    return (utc_now() + timedelta(days=days)).replace(microsecond=0)


def _active_count(store: RefreshTokenStore, owner: str) -> int:
    return sum(1 for r in store.list_for_owner(owner) if not r.revoked)


class TestStore:
    def test_first_record_is_active(self, registry: RefreshRegistry) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        active = registry.active_for(SUBJECT)
        assert active is not None
        assert active.token_hash == _hash(1)
        assert active.revoked is False

    def test_second_store_revokes_first(self, registry: RefreshRegistry, refresh_store: RefreshTokenStore) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.store(_hash(2), SUBJECT, _expiry())
        assert registry.active_for(SUBJECT).token_hash == _hash(2)
        assert refresh_store.get_by_hash(_hash(1)).revoked is True
        assert _active_count(refresh_store, SUBJECT) == 1

    def test_subjects_are_independent(self, registry: RefreshRegistry) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.store(_hash(2), "b@test.com", _expiry())
        assert registry.active_for(SUBJECT).token_hash == _hash(1)
        assert registry.active_for("b@test.com").token_hash == _hash(2)

    def test_expiry_round_trips(self, registry: RefreshRegistry) -> None:
        expires_at = _expiry(7)
        registry.store(_hash(1), SUBJECT, expires_at)
        assert registry.active_for(SUBJECT).expires_at == expires_at


class TestRotate:
    def test_rotate_replaces_record(self, registry: RefreshRegistry, refresh_store: RefreshTokenStore) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        assert registry.active_for(SUBJECT).token_hash == _hash(2)
        assert refresh_store.get_by_hash(_hash(1)).revoked is True
        assert _active_count(refresh_store, SUBJECT) == 1

    def test_replay_after_rotation_is_revoked(self, registry: RefreshRegistry) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        with pytest.raises(AuthError) as exc_info:
            registry.rotate(_hash(1), SUBJECT, _hash(3), _expiry())
        assert exc_info.value.kind is AuthErrorKind.REFRESH_REVOKED

    def test_failed_rotation_writes_nothing(
        self, registry: RefreshRegistry, refresh_store: RefreshTokenStore
    ) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        with pytest.raises(AuthError):
            registry.rotate(_hash(1), SUBJECT, _hash(3), _expiry())
        assert registry.active_for(SUBJECT).token_hash == _hash(2)
        assert refresh_store.get_by_hash(_hash(3)) is None

    def test_unknown_subject_is_not_found(self, registry: RefreshRegistry) -> None:
        with pytest.raises(AuthError) as exc_info:
            registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        assert exc_info.value.kind is AuthErrorKind.REFRESH_NOT_FOUND

    def test_rotate_after_revoke_all_is_revoked(self, registry: RefreshRegistry) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.revoke_all(SUBJECT)
        with pytest.raises(AuthError) as exc_info:
            registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        assert exc_info.value.kind is AuthErrorKind.REFRESH_REVOKED

    def test_other_subjects_hash_does_not_match(self, registry: RefreshRegistry) -> None:
        registry.store(_hash(1), "b@test.com", _expiry())
        with pytest.raises(AuthError) as exc_info:
            registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        assert exc_info.value.kind is AuthErrorKind.REFRESH_NOT_FOUND
        assert registry.active_for("b@test.com").token_hash == _hash(1)

    def test_expired_record(self, refresh_store: RefreshTokenStore) -> None:
        RefreshRegistry(refresh_store).store(_hash(1), SUBJECT, _expiry(1))
        later = RefreshRegistry(refresh_store, clock=lambda: utc_now() + timedelta(days=2))
        with pytest.raises(AuthError) as exc_info:
            later.rotate(_hash(1), SUBJECT, _hash(2), _expiry(32))
        assert exc_info.value.kind is AuthErrorKind.REFRESH_EXPIRED

    def test_all_refresh_kinds_share_public_code(self, registry: RefreshRegistry) -> None:
        with pytest.raises(AuthError) as exc_info:
            registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        assert exc_info.value.public.code == "invalid_refresh_token"
        assert exc_info.value.status_code == 401


class TestConcurrentRotation:
    def test_exactly_one_of_two_racers_wins(
        self, registry: RefreshRegistry, refresh_store: RefreshTokenStore
    ) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        barrier = threading.Barrier(2)
        successes: list[int] = []
        failures: list[AuthError] = []
        lock = threading.Lock()

        def racer(new_hash: str) -> None:
            barrier.wait()
            try:
                record_id = registry.rotate(_hash(1), SUBJECT, new_hash, _expiry())
            except AuthError as exc:
                with lock:
                    failures.append(exc)
            else:
                with lock:
                    successes.append(record_id)

        threads = [threading.Thread(target=racer, args=(_hash(n),)) for n in (2, 3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(successes) == 1
        assert len(failures) == 1
        assert failures[0].kind is AuthErrorKind.REFRESH_REVOKED
        assert _active_count(refresh_store, SUBJECT) == 1
        assert registry.active_for(SUBJECT).id == successes[0]


class TestHousekeeping:
    def test_revoke_all_counts_active_records(self, registry: RefreshRegistry) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        assert registry.revoke_all(SUBJECT) == 1
        assert registry.active_for(SUBJECT) is None
        assert registry.revoke_all(SUBJECT) == 0

    def test_purge_removes_only_expired(self, refresh_store: RefreshTokenStore) -> None:
        RefreshRegistry(refresh_store).store(_hash(1), SUBJECT, _expiry(1))
        RefreshRegistry(refresh_store).store(_hash(2), "b@test.com", _expiry(10))
        later = RefreshRegistry(refresh_store, clock=lambda: utc_now() + timedelta(days=2))
        assert later.purge_expired() == 1
        assert refresh_store.get_by_hash(_hash(1)) is None
        assert refresh_store.get_by_hash(_hash(2)) is not None

    def test_purge_keeps_unexpired_revoked_records(
        self, registry: RefreshRegistry, refresh_store: RefreshTokenStore
    ) -> None:
        registry.store(_hash(1), SUBJECT, _expiry())
        registry.rotate(_hash(1), SUBJECT, _hash(2), _expiry())
        assert registry.purge_expired() == 0
        assert refresh_store.get_by_hash(_hash(1)).revoked is True

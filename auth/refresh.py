"""
auth/refresh.py -- Server-side refresh-token state: issue, rotate, revoke.

Invariant: each principal has at most one live (not revoked, not expired)
refresh record. The registry only handles token hashes; hashing and minting
happen in auth.tokens.TokenCodec.

Rotation is a compare-and-swap on (subject, presented hash). The caller mints
the replacement token first, then rotate() revokes the presented record and
installs the replacement in one transaction. Of two concurrent rotations of
the same token, exactly one swap matches; the other fails closed with
REFRESH_REVOKED and leaves the winner's record untouched.

When the swap matches nothing, the cause is read back from the store without
writing anything, checked in this order:
  no active record            -> REFRESH_NOT_FOUND
                                 (REFRESH_REVOKED if the presented hash is a
                                 known, already revoked record)
  active record has expired   -> REFRESH_EXPIRED
  active record, other hash   -> REFRESH_REVOKED  (replay or lost race)

Revoked and expired records are not deleted here. purge_expired() removes
them once they are past their expiry; the API runs it on a timer.
"""

from __future__ import annotations

import logging
from datetime import datetime

from auth.errors import AuthError, AuthErrorKind
from auth.models import RefreshRecord
from auth.store import RefreshRecordStore
from auth.tokens import Clock, utc_now

logger = logging.getLogger("gatekeeper.refresh")


class RefreshRegistry:
    def __init__(self, store: RefreshRecordStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def store(self, token_hash: str, subject: str, expires_at: datetime) -> int:
        """Install a first-issue record (login, registration), discarding any prior active one."""
        record_id = self._store.replace_active(
            RefreshRecord(token_hash=token_hash, owner_login=subject, expires_at=expires_at)
        )
        logger.info("Refresh record %d issued for %r", record_id, subject)
        return record_id

    def rotate(self, presented_hash: str, subject: str, new_hash: str, new_expires_at: datetime) -> int:
        """Consume the presented record and install its replacement. Returns the new record id."""
        now = self._clock()
        replacement = RefreshRecord(token_hash=new_hash, owner_login=subject, expires_at=new_expires_at)
        record_id = self._store.swap(subject, presented_hash, now, replacement)
        if record_id is not None:
            logger.info("Refresh record rotated for %r (new id %d)", subject, record_id)
            return record_id
        raise self._diagnose(presented_hash, subject, now)

    def _diagnose(self, presented_hash: str, subject: str, now: datetime) -> AuthError:
        active = self._store.get_active(subject)
        if active is None:
            known = self._store.get_by_hash(presented_hash)
            if known is not None and known.owner_login == subject and known.revoked:
                logger.warning("Revoked refresh token presented for %r", subject)
                return AuthError(AuthErrorKind.REFRESH_REVOKED, "record revoked")
            logger.info("No active refresh record for %r", subject)
            return AuthError(AuthErrorKind.REFRESH_NOT_FOUND)
        if active.expires_at <= now:
            logger.info("Refresh record %s for %r has expired", active.id, subject)
            return AuthError(AuthErrorKind.REFRESH_EXPIRED)
        # Replay of an already rotated token, or the losing side of a race.
        logger.warning("Refresh token mismatch for %r -- possible replay", subject)
        return AuthError(AuthErrorKind.REFRESH_REVOKED, "hash mismatch")

    def active_for(self, subject: str) -> RefreshRecord | None:
        return self._store.get_active(subject)

    def revoke_all(self, subject: str) -> int:
        count = self._store.revoke_all(subject)
        logger.info("Revoked %d refresh record(s) for %r", count, subject)
        return count

    def purge_expired(self) -> int:
        return self._store.purge_expired(self._clock())

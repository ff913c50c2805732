"""
auth/store.py -- SQLAlchemy Core persistence for accounts and refresh records.

Pattern: Repository + Data Mapper. UserStore is the Credential Store,
RefreshTokenStore is the Refresh Record Store; _row_to_user and
_row_to_refresh_record are the mappers. The engine and registry only see the
two Protocols below, never SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Raw refresh tokens never reach this module, only their HMAC hashes.

Single active refresh record per owner:
  Enforced twice. In code, every write that installs an active record runs in
  one transaction whose first statement revokes (or compare-and-swaps) the
  previous one. In the schema, a partial UNIQUE index on owner_login WHERE
  revoked = 0 makes a second active row impossible even if that code is
  bypassed. Partial indexes are supported by SQLite and PostgreSQL, the two
  supported backends.

Concurrency:
  The transactions in replace_active() and swap() start with an UPDATE, so on
  SQLite the write lock is taken before anything is read and a concurrent
  caller waits on the busy timeout, then re-reads committed state. On
  PostgreSQL the UPDATE takes the row lock and the loser re-evaluates its WHERE
  clause after the winner commits. Either way the loser's UPDATE matches no
  row.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import RefreshRecord, User
from auth.roles import Role

_DEFAULT_DB_URL = "sqlite:///gatekeeper_auth.db"

# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def find_active_by_login(self, login: str) -> Optional[User]: ...


class RefreshRecordStore(Protocol):
    def replace_active(self, record: RefreshRecord) -> int: ...

    def swap(self, owner_login: str, presented_hash: str, now: datetime, replacement: RefreshRecord) -> Optional[int]: ...

    def get_active(self, owner_login: str) -> Optional[RefreshRecord]: ...

    def get_by_hash(self, token_hash: str) -> Optional[RefreshRecord]: ...

    def revoke_all(self, owner_login: str) -> int: ...

    def purge_expired(self, now: datetime) -> int: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default=Role.USER.value),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("owner_login", String(255), nullable=False, index=True),
    Column("expires_at", Integer, nullable=False),  # unix seconds, same unit as JWT exp
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

Index(
    "uq_refresh_tokens_active_owner",
    _refresh_tokens.c.owner_login,
    unique=True,
    sqlite_where=_refresh_tokens.c.revoked == 0,
    postgresql_where=_refresh_tokens.c.revoked == 0,
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the rotation writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str = _DEFAULT_DB_URL) -> Engine:
    """Create an engine and make sure both tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_epoch(value: datetime) -> int:
    return int(value.timestamp())


# ---------------------------------------------------------------------------
# Credential Store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User accounts.

    Usage:
        store = UserStore(engine)
        store.create_user(User(login="a@test.com", hashed_password=hash_password("secret")))
        user = store.find_active_by_login("a@test.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the login already exists. The
        engine treats that as the authoritative duplicate check, so two
        concurrent registrations of the same login cannot both succeed.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    login=user.login,
                    hashed_password=user.hashed_password,
                    role=user.role.value,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_login(self, login: str) -> Optional[User]:
        """Look up a user by exact login, active or not. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.login == login)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_active_by_login(self, login: str) -> Optional[User]:
        """Look up an active user by login. Deactivated accounts read as not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.login == login) & (_users.c.is_active == 1))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, include_inactive: bool = False) -> list[User]:
        query = _users.select().order_by(_users.c.login)
        if not include_inactive:
            query = query.where(_users.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_role(self, login: str, role: Role) -> bool:
        """Returns True if a row was updated, False if the login was not found."""
        return self._update(login, role=role.value)

    def update_password(self, login: str, hashed_password: str) -> bool:
        return self._update(login, hashed_password=hashed_password)

    def set_active(self, login: str, is_active: bool) -> bool:
        return self._update(login, is_active=1 if is_active else 0)

    def _update(self, login: str, **fields) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.login == login).values(**fields))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Refresh Record Store
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for hashed refresh-token records."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def replace_active(self, record: RefreshRecord) -> int:
        """Revoke every active record of the owner and insert ``record``, atomically."""
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.owner_login == record.owner_login) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
            return self._insert(conn, record)

    def swap(self, owner_login: str, presented_hash: str, now: datetime, replacement: RefreshRecord) -> Optional[int]:
        """Compare-and-swap the owner's active record.

        Revokes the record only if it is still active, unexpired and carries
        ``presented_hash``, and inserts ``replacement`` in the same
        transaction. Returns the new record id, or None when nothing matched
        (in which case nothing was written).
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.owner_login == owner_login)
                    & (_refresh_tokens.c.token_hash == presented_hash)
                    & (_refresh_tokens.c.revoked == 0)
                    & (_refresh_tokens.c.expires_at > _to_epoch(now))
                )
                .values(revoked=1)
            )
            if result.rowcount != 1:
                return None
            return self._insert(conn, replacement)

    def get_active(self, owner_login: str) -> Optional[RefreshRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.owner_login == owner_login) & (_refresh_tokens.c.revoked == 0)
                )
            ).fetchone()
        return _row_to_refresh_record(row) if row is not None else None

    def get_by_hash(self, token_hash: str) -> Optional[RefreshRecord]:
        """Look up a record by hash, revoked or not. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_record(row) if row is not None else None

    def list_for_owner(self, owner_login: str) -> list[RefreshRecord]:
        """All records of an owner, oldest first. Used by audits and tests."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.owner_login == owner_login)
                .order_by(_refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_refresh_record(r) for r in rows]

    def revoke_all(self, owner_login: str) -> int:
        """Revoke every active record of the owner. Returns the number revoked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.owner_login == owner_login) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount

    def purge_expired(self, now: datetime) -> int:
        """Delete records whose expiry has passed, revoked or not. Returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= _to_epoch(now)))
        return result.rowcount

    @staticmethod
    def _insert(conn, record: RefreshRecord) -> int:
        result = conn.execute(
            _refresh_tokens.insert().values(
                token_hash=record.token_hash,
                owner_login=record.owner_login,
                expires_at=_to_epoch(record.expires_at),
                revoked=1 if record.revoked else 0,
                created_at=_now_iso(),
            )
        )
        return result.inserted_primary_key[0]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        login=row.login,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_refresh_record(row) -> RefreshRecord:
    return RefreshRecord(
        id=row.id,
        token_hash=row.token_hash,
        owner_login=row.owner_login,
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
        revoked=bool(row.revoked),
        created_at=row.created_at,
    )

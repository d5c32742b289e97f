"""
auth/store.py -- SQLAlchemy Core persistence layer for Account rows.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Managers never touch SQL directly.

CredentialStore is the Protocol the managers depend on. AccountStore is the
shipped implementation; tests and alternative backends only need to satisfy
the Protocol.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update() only accepts column names from _UPDATABLE_COLUMNS, so a caller
  can never smuggle an arbitrary column name into the statement.

Atomicity:
  update(..., expect={...}) adds equality guards to the WHERE clause and
  reports whether a row changed. Reset-token consumption and refresh-token
  rotation use it to make "check then write" a single UPDATE statement.

Layer rule: no imports from api/, core/, or cache/.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Account

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-case
    Column("password_hash", Text),  # NULL for OAuth-only accounts
    Column("full_name", String(255), nullable=False),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("is_premium", Integer, nullable=False, server_default="0"),
    Column("avatar_url", Text),
    Column("google_id", String(255)),
    Column("refresh_token", Text),
    Column("reset_token", String(64), index=True),
    Column("reset_token_expires", Float),  # epoch seconds
    Column("verification_token", String(64), index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_UPDATABLE_COLUMNS = frozenset(
    {
        "password_hash",
        "full_name",
        "is_verified",
        "is_premium",
        "avatar_url",
        "google_id",
        "refresh_token",
        "reset_token",
        "reset_token_expires",
        "verification_token",
        "last_login_at",
    }
)

_BOOL_COLUMNS = frozenset({"is_verified", "is_premium"})


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: int) -> Account | None: ...

    def find_by_reset_token(self, token: str, now: float) -> Account | None: ...

    def find_by_verification_token(self, token: str) -> Account | None: ...

    def insert(self, account: Account) -> int: ...

    def update(
        self,
        account_id: int,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> bool: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_db(fields: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    for name in _BOOL_COLUMNS & values.keys():
        values[name] = 1 if values[name] else 0
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """SQLAlchemy-backed CredentialStore.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.insert(Account(email="a@b.com", full_name="A B"))
        account = store.find_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Account | None:
        """Case-insensitive lookup; the email is normalized before comparison."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_reset_token(self, token: str, now: float) -> Account | None:
        """Return the account holding this reset token, only if it expires after now."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(
                    (_accounts.c.reset_token == token) & (_accounts.c.reset_token_expires > now)
                )
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_verification_token(self, token: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.verification_token == token)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, account: Account) -> int:
        """Insert a new account and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        CredentialManager turns that into DuplicateAccount, which covers the
        race where two registrations pass the existence check together.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=normalize_email(account.email),
                    password_hash=account.password_hash,
                    full_name=account.full_name,
                    is_verified=1 if account.is_verified else 0,
                    is_premium=1 if account.is_premium else 0,
                    avatar_url=account.avatar_url,
                    google_id=account.google_id,
                    verification_token=account.verification_token,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update(
        self,
        account_id: int,
        fields: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> bool:
        """Write fields on one account in a single UPDATE statement.

        expect maps column names to the values they must currently hold;
        the row is only written when every guard matches. updated_at is
        stamped automatically.

        Returns True if a row was updated. Raises ValueError on unknown
        column names.
        """
        unknown = (set(fields) | set(expect or {})) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown account columns: {sorted(unknown)!r}")
        if not fields:
            return False

        condition = _accounts.c.id == account_id
        for name, value in _to_db(expect or {}).items():
            column = _accounts.c[name]
            condition = condition & (column.is_(None) if value is None else column == value)

        values = _to_db(fields)
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(condition).values(**values))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        full_name=row.full_name,
        is_verified=bool(row.is_verified),
        is_premium=bool(row.is_premium),
        avatar_url=row.avatar_url,
        google_id=row.google_id,
        refresh_token=row.refresh_token,
        reset_token=row.reset_token,
        reset_token_expires=row.reset_token_expires,
        verification_token=row.verification_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )

"""
auth/store.py -- SQLAlchemy Core persistence layer for local user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, CLI and authenticator code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Invariants owned here:
  - exactly one row per email (UNIQUE constraint; IntegrityError on conflict)
  - password_hash NULL marks a directory-managed account
  - created_at is written once on insert; updated_at on every mutation

Schema migration notes:
  updated_at column: added via ALTER TABLE ADD COLUMN when missing so DBs
  created before password-change tracking are upgraded on first startup.

Layer rule: no imports from api/, directory/ or activity/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_SUPERADMIN, ROLE_USER, User

logger = logging.getLogger("authenticator.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for directory-managed accounts
    Column("role", String(20), nullable=False, server_default=ROLE_USER),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

# Columns callers may change through update_user(). Anything else is rejected
# so id and created_at stay immutable.
_MUTABLE_FIELDS = frozenset({"name", "email", "role", "password_hash"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records (the CredentialStore).

    Usage:
        store = UserStore("sqlite:///./authenticator.db")
        user_id = store.create_user(User(name="Ann", email="ann@x.com", password_hash=h))
        user = store.get_by_email("ann@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_updated_at_column()

    def _ensure_updated_at_column(self) -> None:
        """Add updated_at to users tables created before the column existed."""
        if self.engine.dialect.name != "sqlite":
            return
        with self.engine.connect() as conn:
            rows = conn.execute(text("PRAGMA table_info(users)")).fetchall()
            existing_cols = {row[1] for row in rows}
            if "updated_at" not in existing_cols:
                conn.execute(text("ALTER TABLE users ADD COLUMN updated_at TEXT"))
                conn.commit()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_taken(self, email: str, exclude_id: int | None = None) -> bool:
        """Return True if another account already uses email.

        exclude_id lets profile updates keep their own address without
        tripping the check.
        """
        query = select(_users.c.id).where(_users.c.email == email)
        if exclude_id is not None:
            query = query.where(_users.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    def list_users(self) -> list[User]:
        """Return all users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def role_counts(self) -> dict[str, int]:
        """Return {role: count} for every role that has at least one account."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_users.c.role, func.count()).group_by(_users.c.role)).fetchall()
        return {row[0]: row[1] for row in rows}

    def count_created_since(self, days: int) -> int:
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.created_at >= cutoff)
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Round-trip a trivial query. Used by the database health endpoint."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers treat that as a 409; the directory is never contacted for a
        create that failed here.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    password_hash=user.password_hash,
                    role=user.role,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def ensure_mirrored(self, email: str, name: str) -> User:
        """Return the local record for email, creating a directory-managed one if absent.

        The created record has no password hash and role "user". Existing
        records are returned untouched, so repeating a directory login never
        duplicates or demotes the account.

        A concurrent login for the same email may win the insert race. The
        resulting IntegrityError is absorbed by re-reading the row it created.
        """
        existing = self.get_by_email(email)
        if existing is not None:
            return existing
        try:
            user_id = self.create_user(User(name=name or email, email=email, role=ROLE_USER))
            logger.info("Mirrored directory account %s into local store (id=%d)", email, user_id)
        except IntegrityError:
            logger.info("Directory account %s mirrored by a concurrent request", email)
        mirrored = self.get_by_email(email)
        if mirrored is None:
            raise RuntimeError(f"Local record for {email} vanished during mirroring")
        return mirrored

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: name, email, role, password_hash.

        Returns True if a row was updated, False if user_id was not found.
        Raises ValueError for unknown field names and IntegrityError when the
        new email collides with another account.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def set_password(self, user_id: int, password_hash: str) -> bool:
        return self.update_user(user_id, password_hash=password_hash)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        This is the only removal path; there is no soft delete. Activity rows
        owned by the user are left in place for the audit trail.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def ensure_superadmin(self, name: str, email: str, password_hash: str) -> bool:
        """Create the seed superadmin if no account uses email. Returns True if created."""
        if self.get_by_email(email) is not None:
            return False
        try:
            self.create_user(User(name=name, email=email, password_hash=password_hash, role=ROLE_SUPERADMIN))
        except IntegrityError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        created_at=row.created_at,
        updated_at=getattr(row, "updated_at", None),
    )

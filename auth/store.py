"""
auth/store.py -- SQLAlchemy Core persistence layer for legacy user records.

Pattern: Repository + Data Mapper.
LegacyUserStore is the repository; _row_to_user / _row_to_attribute are the
mappers. Route, middleware and migration code never touches SQL directly.

The migration core treats this store as read-only: it only calls
get_by_email(), get_by_id() and get_attribute(). The write methods exist for
the operator CLI (main.py) and the test suite.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: authbridge_legacy.db at the repository root unless DATABASE_URL is set.

Layer rule: no imports from api/, web/, identity/, migration/, or frontend/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import LegacyUser, UserAttribute

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text),  # bcrypt digest; NULL for password-less accounts
    Column("created_at", String(32), nullable=False),
)

_user_attributes = Table(
    "user_attributes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Legacy user id stored as text so it compares directly with the hosted
    # user's external_id.
    Column("user_id", String(64), nullable=False, unique=True),
    Column("attribute", Text, nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class LegacyUserStore:
    """Repository for LegacyUser and UserAttribute records.

    Usage:
        store = LegacyUserStore()
        user = store.get_by_email("ada@example.com")
        attr = store.get_attribute(str(user.id))
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads (used by the migration core)
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> LegacyUser | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> LegacyUser | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_attribute(self, user_id: str) -> UserAttribute | None:
        """Return the attribute row for a legacy user id, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _user_attributes.select().where(_user_attributes.c.user_id == str(user_id))
            ).fetchone()
        return _row_to_attribute(row) if row is not None else None

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (count or 0) > 0

    # ------------------------------------------------------------------
    # Writes (operator CLI and tests only)
    # ------------------------------------------------------------------

    def create_user(self, email: str, password_hash: str | None = None) -> int:
        """Insert a legacy user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(email=email, password=password_hash, created_at=_now_iso())
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def set_attribute(self, user_id: str, attribute: str) -> None:
        """Create or replace the attribute for a legacy user id."""
        with self.engine.connect() as conn:
            updated = conn.execute(
                _user_attributes.update()
                .where(_user_attributes.c.user_id == str(user_id))
                .values(attribute=attribute)
            )
            if updated.rowcount == 0:
                conn.execute(_user_attributes.insert().values(user_id=str(user_id), attribute=attribute))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> LegacyUser:
    return LegacyUser(
        id=row.id,
        email=row.email,
        password_hash=row.password,
        created_at=row.created_at,
    )


def _row_to_attribute(row) -> UserAttribute:
    return UserAttribute(user_id=row.user_id, attribute=row.attribute)

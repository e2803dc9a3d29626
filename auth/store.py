"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper (same as teams/store.py).
UserStore is the repository; _row_to_user is the mapper. Resolver and route
code never touch SQL directly.

Uniqueness:
  UNIQUE(subject) and UNIQUE(email) are enforced by the database. They are the
  storage-level guarantee the identity resolver relies on: when two first-time
  requests for the same subject race, one insert fails with IntegrityError and
  the resolver re-reads instead of creating a duplicate. SQLite treats NULLs
  as distinct in UNIQUE constraints, so any number of not-yet-linked accounts
  (subject NULL) can coexist.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, teams/, access/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import User

_DEFAULT_DB_URL = "sqlite:///pulse.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("subject", String(128), unique=True),  # NULL until first provider login
    Column("email", String(255), nullable=False, unique=True),
    Column("display_name", String(255)),
    Column("created_at", String(32), nullable=False),
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


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///pulse.db")
        uid = store.create_user(User(email="ada@example.com", subject="idp|42"))
        user = store.get_by_subject("idp|42")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the subject or email is already
        taken. The identity resolver treats that as "a concurrent request won"
        and re-resolves.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    subject=user.subject,
                    email=user.email,
                    display_name=user.display_name,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_ids(self, user_ids: list[int]) -> dict[int, User]:
        """Batch lookup keyed by id. Unknown ids are simply absent."""
        if not user_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(user_ids))).fetchall()
        return {r.id: _row_to_user(r) for r in rows}

    def get_by_subject(self, subject: str) -> User | None:
        """Look up a user by identity-provider subject. Returns None if unlinked."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.subject == subject)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def bind_subject(self, user_id: int, subject: str, display_name: str | None = None) -> bool:
        """Link a provider subject to an existing, not-yet-linked account.

        The WHERE clause requires subject IS NULL, so of two concurrent binds
        only one can succeed; the loser gets False and must re-read. A subject
        already bound to another row raises IntegrityError.

        display_name is overwritten only when a non-empty value is given.
        """
        values: dict = {"subject": subject}
        if display_name:
            values["display_name"] = display_name
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & (_users.c.subject.is_(None))).values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        subject=row.subject,
        email=row.email,
        display_name=row.display_name,
        created_at=row.created_at,
    )

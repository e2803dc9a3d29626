"""
teams/store.py -- SQLAlchemy-backed persistence for teams, memberships and tasks.

Uses SQLAlchemy Core (not ORM) so the dataclasses in teams/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. TeamStore is the repository; the _row_to_*
functions are the mappers. Services never touch SQL directly.

Transactions:
  create_team() writes the team row, the creator's ADMIN membership and every
  participant row on one connection and commits once. Any failure rolls the
  whole unit back, so a team never exists without its admin.

Invariants enforced by the schema:
  UNIQUE(team_id, user_id) on team_members -- at most one membership per pair.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TeamStore("sqlite:///pulse.db")
    team_id = store.create_team(Team(name="Acme"), creator_id=1, participants=[])
    store.is_member(team_id, 1)   # True
    store.close()
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from teams.models import Membership, Participant, Role, Task, TaskStatus, Team

_DEFAULT_DB_URL = "sqlite:///pulse.db"

# Fields update_task() accepts. Anything else is a programming error.
_TASK_MUTABLE_FIELDS = {"title", "description", "status", "assignee_id", "team_id", "sprint_id", "deadline"}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

_members = Table(
    "team_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("role", String(20), nullable=False),
    UniqueConstraint("team_id", "user_id", name="uq_team_member"),
)

_participants = Table(
    "team_participants",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", Integer, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("role", String(255), nullable=False),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False),
    Column("assignee_id", Integer),
    Column("creator_id", Integer),
    Column("team_id", Integer, index=True),
    Column("sprint_id", Integer),
    Column("deadline", String(10)),  # YYYY-MM-DD
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TeamStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so the same pooled
            # connection may be used from several threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def create_team(self, team: Team, creator_id: int, participants: list[Participant]) -> int:
        """Insert team + creator ADMIN membership + participants atomically.

        Returns the new team ID. Participant order is preserved by insertion
        order (ascending id).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _teams.insert().values(name=team.name, description=team.description, created_at=_now_iso())
            )
            team_id = result.inserted_primary_key[0]
            conn.execute(_members.insert().values(team_id=team_id, user_id=creator_id, role=Role.ADMIN.value))
            for p in participants:
                conn.execute(_participants.insert().values(team_id=team_id, name=p.name, role=p.role))
            conn.commit()
        return team_id

    def get_team(self, team_id: int) -> Optional[Team]:
        with self.engine.connect() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
        return _row_to_team(row) if row is not None else None

    def update_team(self, team_id: int, **fields) -> bool:
        """Update name and/or description. Returns False if team_id was not found."""
        unknown = set(fields) - {"name", "description"}
        if unknown:
            raise ValueError(f"Unknown team fields: {unknown!r}")
        if not fields:
            return self.get_team(team_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_teams.update().where(_teams.c.id == team_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def teams_of_user(self, user_id: int) -> list[Team]:
        """Teams the user is a member of, most recently created first."""
        stmt = (
            select(_teams)
            .join(_members, _members.c.team_id == _teams.c.id)
            .where(_members.c.user_id == user_id)
            .order_by(_teams.c.created_at.desc(), _teams.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_team(r) for r in rows]

    # ------------------------------------------------------------------
    # Memberships and participants
    # ------------------------------------------------------------------

    def is_member(self, team_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_members.c.id).where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
            ).fetchone()
        return row is not None

    def add_member(self, membership: Membership) -> int:
        """Insert a membership and return its ID.

        Raises sqlalchemy.exc.IntegrityError if the (team_id, user_id) pair
        already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _members.insert().values(
                    team_id=membership.team_id,
                    user_id=membership.user_id,
                    role=membership.role.value,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_members(self, team_id: int) -> list[Membership]:
        """Memberships of a team in the order they were created."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _members.select().where(_members.c.team_id == team_id).order_by(_members.c.id)
            ).fetchall()
        return [_row_to_membership(r) for r in rows]

    def list_participants(self, team_id: int) -> list[Participant]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _participants.select().where(_participants.c.team_id == team_id).order_by(_participants.c.id)
            ).fetchall()
        return [_row_to_participant(r) for r in rows]

    def count_teams(self, name: Optional[str] = None) -> int:
        """Number of team rows, optionally restricted to an exact name."""
        stmt = select(_teams.c.id)
        if name is not None:
            stmt = stmt.where(_teams.c.name == name)
        with self.engine.connect() as conn:
            return len(conn.execute(stmt).fetchall())

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    title=task.title,
                    description=task.description,
                    status=task.status.value,
                    assignee_id=task.assignee_id,
                    creator_id=task.creator_id,
                    team_id=task.team_id,
                    sprint_id=task.sprint_id,
                    deadline=task.deadline,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int) -> Optional[Task]:
        with self.engine.connect() as conn:
            row = conn.execute(_tasks.select().where(_tasks.c.id == task_id)).fetchone()
        return _row_to_task(row) if row is not None else None

    def update_task(self, task_id: int, **fields) -> bool:
        """Update mutable task fields and stamp updated_at.

        status may be passed as TaskStatus; it is stored by value. Returns
        False if task_id was not found.
        """
        unknown = set(fields) - _TASK_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {unknown!r}")
        if isinstance(fields.get("status"), TaskStatus):
            fields["status"] = fields["status"].value
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.update().where(_tasks.c.id == task_id).values(updated_at=_now_iso(), **fields))
            conn.commit()
        return result.rowcount > 0

    def delete_task(self, task_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.delete().where(_tasks.c.id == task_id))
            conn.commit()
        return result.rowcount > 0

    def list_tasks(self, status: Optional[TaskStatus] = None, assignee_id: Optional[int] = None) -> list[Task]:
        """All tasks matching the optional filters, newest first.

        Unfiltered by visibility -- callers must pass the result through
        TaskVisibilityPolicy before showing it to anyone.
        """
        stmt = _tasks.select()
        if status is not None:
            stmt = stmt.where(_tasks.c.status == status.value)
        if assignee_id is not None:
            stmt = stmt.where(_tasks.c.assignee_id == assignee_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.order_by(_tasks.c.created_at.desc(), _tasks.c.id.desc())).fetchall()
        return [_row_to_task(r) for r in rows]

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_team(row) -> Team:
    return Team(id=row.id, name=row.name, description=row.description, created_at=row.created_at)


def _row_to_membership(row) -> Membership:
    return Membership(id=row.id, team_id=row.team_id, user_id=row.user_id, role=Role(row.role))


def _row_to_participant(row) -> Participant:
    return Participant(id=row.id, team_id=row.team_id, name=row.name, role=row.role)


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        assignee_id=row.assignee_id,
        creator_id=row.creator_id,
        team_id=row.team_id,
        sprint_id=row.sprint_id,
        deadline=row.deadline,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

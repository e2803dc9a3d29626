"""
cache/store.py -- Backing stores for the team-creation de-duplication cache.

A CreationStore holds key -> CreationRecord and provides the mutual-exclusion
primitive the de-duplicator wraps around its whole purge/lookup/create/record
sequence. get(), put() and purge_older_than() must only be called while
lock() is held.

Backends:
  InMemoryCreationStore -- dict + threading.Lock. Process-wide; forgotten on
                           restart. Right for a single worker process.
  SQLiteCreationStore   -- one SQLite file shared by every worker process on
                           a host. BEGIN IMMEDIATE takes SQLite's write lock,
                           which serializes the critical section across
                           processes; a thread lock serializes threads sharing
                           the connection. Records must use wall-clock time
                           because monotonic clocks differ per process.

Usage:
    store = InMemoryCreationStore()
    with store.lock():
        store.purge_older_than(now - 5)
        record = store.get((user_id, "Acme"))
        ...
        store.put((user_id, "Acme"), CreationRecord(team_id, now, snapshot))
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import ContextManager, Optional, Protocol, Union

from teams.models import TeamSnapshot

CreationKey = tuple[int, str]  # (requesting user id, requested team name)

_DDL = """
CREATE TABLE IF NOT EXISTS team_creations (
    cache_key   TEXT PRIMARY KEY,
    team_id     INTEGER NOT NULL,
    created_at  REAL NOT NULL,
    snapshot    TEXT NOT NULL
);
"""


@dataclass(frozen=True)
class CreationRecord:
    team_id: int
    created_at: float  # seconds on the de-duplicator's clock
    snapshot: TeamSnapshot


class CreationStore(Protocol):
    def lock(self) -> ContextManager[None]: ...

    def get(self, key: CreationKey) -> Optional[CreationRecord]: ...

    def put(self, key: CreationKey, record: CreationRecord) -> None: ...

    def purge_older_than(self, cutoff: float) -> int: ...


class InMemoryCreationStore:
    def __init__(self) -> None:
        self._records: dict[CreationKey, CreationRecord] = {}
        self._lock = threading.Lock()

    def lock(self) -> ContextManager[None]:
        return self._lock

    def get(self, key: CreationKey) -> Optional[CreationRecord]:
        return self._records.get(key)

    def put(self, key: CreationKey, record: CreationRecord) -> None:
        self._records[key] = record

    def purge_older_than(self, cutoff: float) -> int:
        stale = [k for k, r in self._records.items() if r.created_at < cutoff]
        for k in stale:
            del self._records[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)


class SQLiteCreationStore:
    def __init__(self, db_path: Union[str, Path] = "pulse_dedup.db", busy_timeout: float = 10.0) -> None:
        # isolation_level=None: transactions are managed explicitly in lock().
        self._conn = sqlite3.connect(
            str(db_path),
            timeout=busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._thread_lock = threading.Lock()

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._thread_lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def get(self, key: CreationKey) -> Optional[CreationRecord]:
        row = self._conn.execute(
            "SELECT team_id, created_at, snapshot FROM team_creations WHERE cache_key = ?",
            (_encode_key(key),),
        ).fetchone()
        if row is None:
            return None
        team_id, created_at, snapshot = row
        return CreationRecord(team_id, created_at, TeamSnapshot.from_dict(json.loads(snapshot)))

    def put(self, key: CreationKey, record: CreationRecord) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO team_creations (cache_key, team_id, created_at, snapshot) VALUES (?, ?, ?, ?)",
            (_encode_key(key), record.team_id, record.created_at, json.dumps(record.snapshot.to_dict())),
        )

    def purge_older_than(self, cutoff: float) -> int:
        cursor = self._conn.execute("DELETE FROM team_creations WHERE created_at < ?", (cutoff,))
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()


def _encode_key(key: CreationKey) -> str:
    return json.dumps([key[0], key[1]])

"""
cache/dedup.py -- Near at-most-once team creation despite client retries.

A double-click or a network retry sends the same "create team" request twice.
CreationDeduplicator remembers, per (requester, team name), which team was
created and when:

  age < suppression horizon (3s)   -> replay the earlier result, write nothing
  age >= suppression horizon       -> genuinely new request, create again
  age > eviction horizon (5s)      -> bookkeeping purged on the next call

Between the two horizons a stale record is still stored but no longer
consulted; a new creation in that gap overwrites it. The horizons are
independent settings and must stay ordered (suppression < eviction).

The whole purge -> lookup -> create -> record sequence runs inside the
store's lock, so two concurrent identical requests cannot both see "nothing
recorded" and both write: the second waits, then sees the first's record.
A record is written only after create() returns; a failed creation leaves
no trace. The store keeps its own copy of the snapshot and every replay gets
a fresh copy, so a caller mutating its result cannot change later replays.

The clock is injected. Use time.monotonic for the in-memory store and
time.time for stores shared between processes.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from cache.store import CreationKey, CreationRecord, CreationStore
from teams.models import TeamSnapshot

logger = logging.getLogger("pulse.dedup")


@dataclass(frozen=True)
class CreationResult:
    snapshot: TeamSnapshot
    deduplicated: bool


class CreationDeduplicator:
    def __init__(
        self,
        store: CreationStore,
        clock: Callable[[], float] = time.monotonic,
        suppression_seconds: float = 3.0,
        eviction_seconds: float = 5.0,
    ) -> None:
        if not 0 < suppression_seconds < eviction_seconds:
            raise ValueError("suppression_seconds must be positive and shorter than eviction_seconds")
        self.store = store
        self.clock = clock
        self.suppression_seconds = suppression_seconds
        self.eviction_seconds = eviction_seconds

    def run(self, key: CreationKey, create: Callable[[], TeamSnapshot]) -> CreationResult:
        """Call create() unless an identical request succeeded moments ago."""
        with self.store.lock():
            now = self.clock()
            purged = self.store.purge_older_than(now - self.eviction_seconds)
            if purged:
                logger.debug("Purged %d expired creation record(s)", purged)

            record = self.store.get(key)
            if record is not None and now - record.created_at < self.suppression_seconds:
                logger.info(
                    "Duplicate team creation by user %d for %r; returning team %d",
                    key[0],
                    key[1],
                    record.team_id,
                )
                return CreationResult(snapshot=copy.deepcopy(record.snapshot), deduplicated=True)

            snapshot = create()
            record = CreationRecord(team_id=snapshot.id, created_at=now, snapshot=copy.deepcopy(snapshot))
            self.store.put(key, record)
            return CreationResult(snapshot=snapshot, deduplicated=False)

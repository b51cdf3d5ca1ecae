"""
warden.engine.cache — Read-Through "Has Voted" Cache
=====================================================

Menus ask "has this member already voted on this application?" far more
often than votes are cast.  :class:`VoteCache` memoizes known ballots in
front of the vote ledger.

Rules:
- Only ballots read from the ledger are stored.
- A miss is **never** taken as "no vote": callers fall back to the ledger.
- Every cast/retract invalidates its key before and after it commits.
- Every invalidation bumps a generation counter.  A fill carries the
  generation seen before its ledger read and is dropped if any
  invalidation happened since, so a slow reader cannot write back a
  ballot that a concurrent retract already removed.
- Entries expire after ``ttl_seconds``; ``put`` prunes expired entries
  at most once per TTL, so there is no sweeper thread.
"""

from __future__ import annotations

import threading
import time

from warden.database.models import Ballot

DEFAULT_TTL_SECONDS = 600.0


class VoteCache:
    """Thread-safe TTL map of ``(application_id, voter_id) → Ballot``."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._entries: dict[tuple[int, int], tuple[Ballot, float]] = {}
        self._generation = 0
        self._last_prune = time.monotonic()

    def get(self, application_id: int, voter_id: int) -> Ballot | None:
        key = (application_id, voter_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            ballot, stored_at = entry
            if time.monotonic() - stored_at > self._ttl:
                del self._entries[key]
                return None
            return ballot

    def generation(self) -> int:
        """Token to take before reading the ledger and pass to :meth:`put`."""
        with self._lock:
            return self._generation

    def put(
        self,
        application_id: int,
        voter_id: int,
        ballot: Ballot,
        generation: int | None = None,
    ) -> bool:
        """Store *ballot* unless the cache was invalidated since *generation*."""
        now = time.monotonic()
        with self._lock:
            if now - self._last_prune > self._ttl:
                self._prune(now)
            if generation is not None and generation != self._generation:
                return False
            self._entries[(application_id, voter_id)] = (ballot, now)
            return True

    def invalidate(self, application_id: int, voter_id: int) -> None:
        with self._lock:
            self._generation += 1
            self._entries.pop((application_id, voter_id), None)

    def invalidate_application(self, application_id: int) -> None:
        """Drop every cached ballot for *application_id* (deletion cascade)."""
        with self._lock:
            self._generation += 1
            for key in [k for k in self._entries if k[0] == application_id]:
                del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._entries.clear()

    def _prune(self, now: float) -> None:
        # Caller holds the lock.
        for key in [k for k, (_, stored_at) in self._entries.items() if now - stored_at > self._ttl]:
            del self._entries[key]
        self._last_prune = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

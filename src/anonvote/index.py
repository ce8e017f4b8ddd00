"""Duplicate-detection index keyed by linkability tag.

Inserts are atomic per election: `claim` is an insert-if-absent under a
per-election lock, so two racing claims for the same tag cannot both win.
Nothing is ever evicted: memory grows with the number of elections and
voters seen by one index.
"""

import threading
from typing import Dict, Set


class TagIndex:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._seen: Dict[str, Set[str]] = {}

    def _lock_for(self, election_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(election_id)
            if lock is None:
                lock = self._locks[election_id] = threading.Lock()
                self._seen[election_id] = set()
            return lock

    def claim(self, election_id: str, tag: str) -> bool:
        """Record `tag` for `election_id`. False if it was already there."""
        with self._lock_for(election_id):
            seen = self._seen[election_id]
            if tag in seen:
                return False
            seen.add(tag)
            return True

    def seen(self, election_id: str, tag: str) -> bool:
        with self._lock_for(election_id):
            return tag in self._seen[election_id]

    def count(self, election_id: str) -> int:
        with self._lock_for(election_id):
            return len(self._seen[election_id])

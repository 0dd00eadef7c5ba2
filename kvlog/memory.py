"""
In-memory backend for the versioned store.

Satisfies the same capability interfaces as the Django backend. Useful
for embedding kvlog without a database and for exercising the core
write/read paths in isolation. A lock makes each insert an atomic
check-then-insert, the same guarantee a database unique index gives.
`MemoryValueStore.atomic()` stands in for a transaction so that a failed
write leaves no value record behind.
"""

import bisect
import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from kvlog.cursor import Cursor
from kvlog.deadline import Deadline, check_deadline
from kvlog.exceptions import DuplicateVersion, NotFound
from kvlog.records import Entry, ValueRef, content_hash, normalize

logger = logging.getLogger(__name__)


class MemoryValueStore:
    """Dict of content hash -> payload, with rollback scopes."""

    def __init__(self):
        self._records: Dict[str, str] = {}
        # Records inserted inside a scope that has not finished yet, mapped
        # to the number of put() calls relying on them.
        self._claims: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._local = threading.local()

    def __len__(self) -> int:
        return len(self._records)

    def _scopes(self) -> List[List[str]]:
        if not hasattr(self._local, "scopes"):
            self._local.scopes = []
        return self._local.scopes

    @contextmanager
    def atomic(self):
        """
        Remove the records inserted inside the block if it raises.

        Scopes nest per thread; an inner scope that succeeds hands its
        inserts to the enclosing one. A record another put() also relied on
        while the scope was open is kept.
        """
        scopes = self._scopes()
        inserted: List[str] = []
        scopes.append(inserted)
        try:
            yield
        except BaseException:
            scopes.pop()
            self._discard(inserted)
            raise
        scopes.pop()
        if scopes:
            scopes[-1].extend(inserted)
        else:
            with self._lock:
                for vid in inserted:
                    self._claims.pop(vid, None)

    def _discard(self, inserted: List[str]) -> None:
        with self._lock:
            for vid in inserted:
                claims = self._claims.get(vid, 1) - 1
                if claims > 0:
                    self._claims[vid] = claims
                    continue
                self._claims.pop(vid, None)
                self._records.pop(vid, None)
                logger.debug(f"Rolled back value {vid}")

    def put(self, payload: str, deadline: Optional[Deadline] = None) -> str:
        check_deadline(deadline)
        payload = normalize(payload)
        vid = content_hash(payload)
        scopes = self._scopes()
        with self._lock:
            if vid in self._records:
                logger.debug(f"Value {vid} already stored")
                if vid in self._claims:
                    self._claims[vid] += 1
                return vid
            self._records[vid] = payload
            if scopes:
                self._claims[vid] = 1
                scopes[-1].append(vid)
        return vid

    def get(self, vid: str, deadline: Optional[Deadline] = None) -> str:
        check_deadline(deadline)
        try:
            return self._records[vid]
        except KeyError as exc:
            raise NotFound(f"No value record with id {vid!r}") from exc


class MemoryHistoryIndex:
    """Per-key lists of entries kept sorted by ascending timestamp."""

    def __init__(self):
        self._entries: Dict[str, List[Entry]] = {}
        self._timestamps: Dict[str, List[int]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def append(
        self,
        key: str,
        timestamp: int,
        value_ref: ValueRef,
        deadline: Optional[Deadline] = None,
    ) -> Entry:
        check_deadline(deadline)
        entry = Entry(key=key, timestamp=timestamp, value_ref=value_ref)
        with self._lock:
            timestamps = self._timestamps.setdefault(key, [])
            entries = self._entries.setdefault(key, [])
            pos = bisect.bisect_left(timestamps, timestamp)
            if pos < len(timestamps) and timestamps[pos] == timestamp:
                raise DuplicateVersion(key, timestamp)
            timestamps.insert(pos, timestamp)
            entries.insert(pos, entry)
        return entry

    def latest(self, key: str, deadline: Optional[Deadline] = None) -> Entry:
        check_deadline(deadline)
        entries = self._entries.get(key)
        if not entries:
            raise NotFound(f"No history for key {key!r}")
        return entries[-1]

    def after(
        self, key: str, timestamp: int, deadline: Optional[Deadline] = None
    ) -> Entry:
        check_deadline(deadline)
        with self._lock:
            timestamps = self._timestamps.get(key, [])
            pos = bisect.bisect_left(timestamps, timestamp)
            if pos == len(timestamps):
                raise NotFound(f"No version of key {key!r} at or after {timestamp}")
            return self._entries[key][pos]

    def iterate(self, key: str, deadline: Optional[Deadline] = None) -> Cursor[Entry]:
        check_deadline(deadline)
        with self._lock:
            snapshot = list(reversed(self._entries.get(key, [])))
        return Cursor(snapshot, deadline=deadline)

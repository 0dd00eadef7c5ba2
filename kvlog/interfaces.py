"""
Capability interfaces the versioned store needs from a backing store.

Any object satisfying these protocols can back a `VersionedStore`: the
Django ORM backend in `kvlog.stores` and the in-memory backend in
`kvlog.memory` are the two shipped here.

Every method takes an optional `deadline` and must check it before doing
work that can block.
"""

from typing import Iterator, Optional, Protocol

from kvlog.deadline import Deadline
from kvlog.records import Entry, ValueRef


class HistoryCursor(Protocol):
    """Forward-only cursor over history entries, newest first.

    The cursor owns its underlying result set until `close()` is called.
    Used as a context manager it is closed on exit.
    """

    def __iter__(self) -> Iterator[Entry]: ...

    def __next__(self) -> Entry: ...

    def close(self) -> None: ...

    def __enter__(self) -> "HistoryCursor": ...

    def __exit__(self, exc_type, exc, tb) -> None: ...


class ValueStore(Protocol):
    """Write-once, content-addressed payload storage.

    A store may also provide `atomic()`, a scope that removes records
    inserted inside it when the block raises; `VersionedStore` runs writes
    inside it.
    """

    def put(self, payload: str, deadline: Optional[Deadline] = None) -> str:
        """Store `payload` if its hash is new; return the hash."""
        ...

    def get(self, vid: str, deadline: Optional[Deadline] = None) -> str:
        """Return the payload for `vid` or raise NotFound."""
        ...


class HistoryIndex(Protocol):
    """Append-only log of (key, timestamp, value_ref), unique on (key, timestamp)."""

    def append(
        self,
        key: str,
        timestamp: int,
        value_ref: ValueRef,
        deadline: Optional[Deadline] = None,
    ) -> Entry:
        """Insert a new entry or raise DuplicateVersion."""
        ...

    def latest(self, key: str, deadline: Optional[Deadline] = None) -> Entry:
        """Entry with the greatest timestamp for `key`, or NotFound."""
        ...

    def after(
        self, key: str, timestamp: int, deadline: Optional[Deadline] = None
    ) -> Entry:
        """Entry with the smallest timestamp >= `timestamp`, or NotFound."""
        ...

    def iterate(self, key: str, deadline: Optional[Deadline] = None) -> HistoryCursor:
        """Fresh cursor over every entry for `key`, newest first."""
        ...

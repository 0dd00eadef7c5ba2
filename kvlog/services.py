"""
Versioned key/value operations.

`VersionedStore` holds the write and read paths over an injected value
store and history index. Module-level helpers (`set_value`, `read_value`,
...) bind it to the Django ORM backend and the project settings, the way
views call into the store.
"""

import contextlib
import logging
import time
from typing import Callable, ContextManager, Iterator, Optional, Tuple

from django.conf import settings
from django.db import transaction

from kvlog.deadline import Deadline, check_deadline
from kvlog.exceptions import NotFound
from kvlog.interfaces import HistoryIndex, ValueStore
from kvlog.models import MAX_KEY_LENGTH
from kvlog.records import Entry, Inline, Reference, ValueRef, content_hash, normalize
from kvlog.stores import DjangoHistoryIndex, DjangoValueStore

logger = logging.getLogger(__name__)

# Values longer than this many characters are stored in the value store.
DEFAULT_INLINE_THRESHOLD = 200


def get_inline_threshold() -> int:
    return getattr(settings, "KVLOG_INLINE_THRESHOLD", DEFAULT_INLINE_THRESHOLD)


class HistoryIterator(Iterator[Tuple[int, str]]):
    """
    Lazy (timestamp, value) sequence for one key, newest first.

    Each entry is resolved through the value store as it is reached.
    Use it as a context manager (or exhaust it) so the underlying cursor
    is released:

        with store.history("foo") as versions:
            for ts, value in versions:
                ...
    """

    def __init__(self, store: "VersionedStore", key: str, deadline: Optional[Deadline]):
        self._store = store
        self._deadline = deadline
        self._cursor = store.history_index.iterate(key, deadline=deadline)

    def __iter__(self) -> "HistoryIterator":
        return self

    def __next__(self) -> Tuple[int, str]:
        entry = next(self._cursor)
        try:
            return entry.timestamp, self._store.resolve(entry, deadline=self._deadline)
        except BaseException:
            self.close()
            raise

    def close(self) -> None:
        self._cursor.close()

    def __enter__(self) -> "HistoryIterator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class VersionedStore:
    """Time-versioned key/value store over a value store and a history index.

    Args:
        value_store: content-addressed payload storage
        history_index: append-only (key, timestamp) log
        inline_threshold: longest value kept inline in the history entry
        clock: returns the timestamp for new versions (nanoseconds)
        atomic: returns the context manager a write runs inside; defaults
            to the value store's `atomic` scope when it has one
        max_key_length: longest key the history index can hold
    """

    def __init__(
        self,
        value_store: ValueStore,
        history_index: HistoryIndex,
        inline_threshold: int = DEFAULT_INLINE_THRESHOLD,
        clock: Callable[[], int] = time.time_ns,
        atomic: Optional[Callable[[], ContextManager]] = None,
        max_key_length: Optional[int] = None,
    ):
        self.value_store = value_store
        self.history_index = history_index
        self.inline_threshold = inline_threshold
        self.clock = clock
        self.atomic = atomic or getattr(value_store, "atomic", contextlib.nullcontext)
        self.max_key_length = max_key_length

    def set(
        self, key: str, value: str, deadline: Optional[Deadline] = None
    ) -> Tuple[Entry, bool]:
        """
        Make `value` the current value of `key`.

        Consecutive identical writes do not grow the history. A failed write
        leaves no new value record or history entry behind.

        Returns:
            Tuple of (entry, created): the entry current after the call and
            whether a new version was appended

        Raises:
            ValueError: key is empty or longer than max_key_length
            DuplicateVersion: the clock returned a timestamp already used for key
            Cancelled: the deadline fired before the write completed
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if self.max_key_length is not None and len(key) > self.max_key_length:
            raise ValueError(f"key must be at most {self.max_key_length} characters")
        value = normalize(value)
        candidate = self._value_ref_for(value)

        with self.atomic():
            try:
                latest = self.history_index.latest(key, deadline=deadline)
            except NotFound:
                latest = None

            if latest is not None and latest.value_ref == candidate:
                logger.debug(f"Value for {key!r} unchanged since {latest.timestamp}")
                return latest, False

            if isinstance(candidate, Reference):
                self.value_store.put(value, deadline=deadline)
            check_deadline(deadline)
            entry = self.history_index.append(
                key, self.clock(), candidate, deadline=deadline
            )

        logger.info(f"Appended version {entry.timestamp} for {key!r}")
        return entry, True

    def _value_ref_for(self, value: str) -> ValueRef:
        if len(value) > self.inline_threshold:
            return Reference(content_hash(value))
        return Inline(value)

    def resolve(self, entry: Entry, deadline: Optional[Deadline] = None) -> str:
        """Return the value an entry holds inline or references."""
        if isinstance(entry.value_ref, Inline):
            return entry.value_ref.value
        try:
            return self.value_store.get(entry.value_ref.vid, deadline=deadline)
        except NotFound:
            logger.error(
                f"Entry {entry.key!r}@{entry.timestamp} references missing "
                f"value {entry.value_ref.vid}"
            )
            raise

    def get(self, key: str, deadline: Optional[Deadline] = None) -> str:
        """Current value of `key`, or NotFound."""
        return self.resolve(self.history_index.latest(key, deadline=deadline), deadline)

    def get_entry(self, key: str, deadline: Optional[Deadline] = None) -> Entry:
        """Latest entry of `key` without resolving its value, or NotFound."""
        return self.history_index.latest(key, deadline=deadline)

    def get_at(self, key: str, timestamp: int, deadline: Optional[Deadline] = None) -> str:
        """Earliest value of `key` whose timestamp is >= `timestamp`, or NotFound."""
        entry = self.history_index.after(key, timestamp, deadline=deadline)
        return self.resolve(entry, deadline)

    def get_entry_at(
        self, key: str, timestamp: int, deadline: Optional[Deadline] = None
    ) -> Entry:
        """Earliest entry of `key` at or after `timestamp`, unresolved, or NotFound."""
        return self.history_index.after(key, timestamp, deadline=deadline)

    def history(self, key: str, deadline: Optional[Deadline] = None) -> HistoryIterator:
        """Lazy (timestamp, value) pairs for `key`, newest first."""
        return HistoryIterator(self, key, deadline)


def get_store() -> VersionedStore:
    """Versioned store backed by the Django database."""
    return VersionedStore(
        DjangoValueStore(),
        DjangoHistoryIndex(),
        inline_threshold=get_inline_threshold(),
        atomic=transaction.atomic,
        max_key_length=MAX_KEY_LENGTH,
    )


def request_deadline() -> Optional[Deadline]:
    """Deadline for one API request, from KVLOG_REQUEST_TIMEOUT."""
    timeout = getattr(settings, "KVLOG_REQUEST_TIMEOUT", None)
    return None if timeout is None else Deadline(timeout)


def set_value(
    key: str, value: str, deadline: Optional[Deadline] = None
) -> Tuple[Entry, str, bool]:
    """
    Write `value` to `key` in the database.

    Returns:
        Tuple of (entry, value, created) where value is the stored
        (whitespace-trimmed) value
    """
    store = get_store()
    entry, created = store.set(key, value, deadline=deadline)
    return entry, normalize(value), created


def read_value(
    key: str, at: Optional[int] = None, deadline: Optional[Deadline] = None
) -> Tuple[Entry, str]:
    """Latest entry for key (or the first at/after `at`) and its value."""
    store = get_store()
    if at is None:
        entry = store.get_entry(key, deadline=deadline)
    else:
        entry = store.get_entry_at(key, at, deadline=deadline)
    return entry, store.resolve(entry, deadline=deadline)


def read_history(
    key: str, limit: int, deadline: Optional[Deadline] = None
) -> Tuple[list, bool]:
    """
    Up to `limit` (timestamp, value) pairs for key, newest first.

    Returns:
        Tuple of (versions, has_more)
    """
    store = get_store()
    versions = []
    with store.history_index.iterate(key, deadline=deadline) as cursor:
        for entry in cursor:
            if len(versions) == limit:
                # One extra entry tells us there is more; it is never resolved.
                return versions, True
            versions.append((entry.timestamp, store.resolve(entry, deadline=deadline)))
    return versions, False

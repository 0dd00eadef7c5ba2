"""
Django ORM backend for the versioned store.

`DjangoValueStore` and `DjangoHistoryIndex` implement the capability
interfaces in `kvlog.interfaces` on top of the `ValueRecord` and
`HistoryEntry` models. Uniqueness of (key, ts) and of value ids is
enforced by the database; this module only translates database failures
into the kvlog error taxonomy.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction

from kvlog.cursor import Cursor
from kvlog.deadline import Deadline, check_deadline
from kvlog.exceptions import BackendError, DuplicateVersion, NotFound
from kvlog.models import HistoryEntry, ValueRecord
from kvlog.records import Entry, ValueRef, content_hash, normalize

logger = logging.getLogger(__name__)

DEFAULT_ITERATOR_CHUNK_SIZE = 500


def get_iterator_chunk_size() -> int:
    """Rows fetched per round trip when streaming history."""
    return getattr(settings, "KVLOG_ITERATOR_CHUNK_SIZE", DEFAULT_ITERATOR_CHUNK_SIZE)


@contextmanager
def translate_errors(operation: str):
    """Re-raise unclassified database failures as BackendError."""
    try:
        yield
    except DatabaseError as exc:
        logger.error(f"Backend failure during {operation}: {exc}")
        raise BackendError(f"{operation} failed: {exc}") from exc


class DjangoValueStore:
    """Value records stored in the `ValueRecord` table."""

    def atomic(self):
        """Scope that rolls back value records inserted inside it on error."""
        return transaction.atomic()

    def put(self, payload: str, deadline: Optional[Deadline] = None) -> str:
        check_deadline(deadline)
        payload = normalize(payload)
        vid = content_hash(payload)
        with translate_errors("value put"):
            if ValueRecord.objects.filter(pk=vid).exists():
                logger.debug(f"Value {vid} already stored")
                return vid
            check_deadline(deadline)
            try:
                with transaction.atomic():
                    ValueRecord.objects.create(id=vid, payload=payload)
            except IntegrityError:
                # A concurrent writer inserted the same content first. The id is
                # derived from the payload, so the stored record is identical.
                logger.debug(f"Value {vid} inserted concurrently")
            else:
                logger.debug(f"Stored value {vid} ({len(payload)} chars)")
        return vid

    def get(self, vid: str, deadline: Optional[Deadline] = None) -> str:
        check_deadline(deadline)
        with translate_errors("value get"):
            try:
                return ValueRecord.objects.only("payload").get(pk=vid).payload
            except ValueRecord.DoesNotExist as exc:
                raise NotFound(f"No value record with id {vid!r}") from exc


class DjangoHistoryIndex:
    """History entries stored in the `HistoryEntry` table."""

    def __init__(self, chunk_size: Optional[int] = None):
        self.chunk_size = chunk_size

    def append(
        self,
        key: str,
        timestamp: int,
        value_ref: ValueRef,
        deadline: Optional[Deadline] = None,
    ) -> Entry:
        check_deadline(deadline)
        row = HistoryEntry.from_value_ref(key, timestamp, value_ref)
        with translate_errors("history append"):
            try:
                with transaction.atomic():
                    row.save(force_insert=True)
            except IntegrityError as exc:
                if HistoryEntry.objects.filter(key=key, ts=timestamp).exists():
                    logger.warning(f"Duplicate version {timestamp} for key {key!r}")
                    raise DuplicateVersion(key, timestamp) from exc
                raise
        return row.to_entry()

    def latest(self, key: str, deadline: Optional[Deadline] = None) -> Entry:
        check_deadline(deadline)
        with translate_errors("history latest"):
            row = HistoryEntry.objects.filter(key=key).order_by("-ts").first()
        if row is None:
            raise NotFound(f"No history for key {key!r}")
        return row.to_entry()

    def after(
        self, key: str, timestamp: int, deadline: Optional[Deadline] = None
    ) -> Entry:
        check_deadline(deadline)
        with translate_errors("history after"):
            row = (
                HistoryEntry.objects.filter(key=key, ts__gte=timestamp)
                .order_by("ts")
                .first()
            )
        if row is None:
            raise NotFound(f"No version of key {key!r} at or after {timestamp}")
        return row.to_entry()

    def iterate(self, key: str, deadline: Optional[Deadline] = None) -> Cursor[Entry]:
        check_deadline(deadline)
        queryset = (
            HistoryEntry.objects.filter(key=key)
            .only("key", "ts", "value", "vid")
            .order_by("-ts")
        )
        chunk_size = self.chunk_size or get_iterator_chunk_size()

        def rows():
            # Streams rows instead of loading the whole history.
            with translate_errors("history iterate"):
                yield from queryset.iterator(chunk_size=chunk_size)

        return Cursor(rows(), transform=HistoryEntry.to_entry, deadline=deadline)

from unittest.mock import patch

from django.db import IntegrityError, OperationalError, transaction
from django.test import TestCase, override_settings

from kvlog.exceptions import BackendError, DuplicateVersion, NotFound
from kvlog.models import MAX_KEY_LENGTH, HistoryEntry, ValueRecord
from kvlog.records import Entry, Inline, Reference, content_hash
from kvlog.services import VersionedStore, get_store, read_history, read_value, set_value
from kvlog.stores import DjangoHistoryIndex, DjangoValueStore

LONG = "the quick brown fox jumps over the lazy dog " * 10


class DjangoValueStoreTests(TestCase):
    def setUp(self):
        self.values = DjangoValueStore()

    def test_put_returns_content_hash(self):
        vid = self.values.put("  payload \n")
        self.assertEqual(vid, content_hash("payload"))
        self.assertEqual(self.values.get(vid), "payload")

    def test_put_is_idempotent(self):
        first = self.values.put(LONG)
        second = self.values.put(LONG)
        self.assertEqual(first, second)
        self.assertEqual(ValueRecord.objects.count(), 1)

    def test_get_missing_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.values.get("0" * 40)

    def test_database_failure_raises_backend_error(self):
        with patch.object(
            ValueRecord.objects, "filter", side_effect=OperationalError("database is locked")
        ):
            with self.assertRaises(BackendError) as ctx:
                self.values.put(LONG)
        self.assertIsInstance(ctx.exception.__cause__, OperationalError)


class DjangoHistoryIndexTests(TestCase):
    def setUp(self):
        self.index = DjangoHistoryIndex(chunk_size=2)
        for ts, value in ((10, "a"), (20, "b"), (30, "c"), (40, "d"), (50, "e")):
            self.index.append("foo", ts, Inline(value))

    def test_append_returns_entry(self):
        entry = self.index.append("bar", 1, Reference("f" * 40))
        self.assertEqual(entry, Entry("bar", 1, Reference("f" * 40)))
        row = HistoryEntry.objects.get(key="bar")
        self.assertIsNone(row.value)
        self.assertEqual(row.vid, "f" * 40)

    def test_duplicate_timestamp_raises(self):
        with self.assertRaises(DuplicateVersion) as ctx:
            self.index.append("foo", 30, Inline("again"))
        self.assertIsInstance(ctx.exception.__cause__, IntegrityError)
        self.assertEqual(HistoryEntry.objects.filter(key="foo").count(), 5)

    def test_latest(self):
        self.assertEqual(self.index.latest("foo"), Entry("foo", 50, Inline("e")))
        with self.assertRaises(NotFound):
            self.index.latest("bar")

    def test_after(self):
        self.assertEqual(self.index.after("foo", 0).timestamp, 10)
        self.assertEqual(self.index.after("foo", 30).timestamp, 30)
        self.assertEqual(self.index.after("foo", 31).timestamp, 40)
        with self.assertRaises(NotFound):
            self.index.after("foo", 51)

    def test_iterate_streams_newest_first(self):
        with self.index.iterate("foo") as cursor:
            timestamps = [entry.timestamp for entry in cursor]
        self.assertEqual(timestamps, [50, 40, 30, 20, 10])

    def test_iterate_closed_early(self):
        cursor = self.index.iterate("foo")
        with cursor:
            self.assertEqual(next(cursor).timestamp, 50)
        self.assertTrue(cursor.closed)
        self.assertEqual(list(cursor), [])

    def test_iterate_is_restartable(self):
        first = [entry.timestamp for entry in self.index.iterate("foo")]
        second = [entry.timestamp for entry in self.index.iterate("foo")]
        self.assertEqual(first, second)

    def test_value_and_vid_are_mutually_exclusive(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                HistoryEntry.objects.create(key="bad", ts=1, value="a", vid="b" * 40)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                HistoryEntry.objects.create(key="bad", ts=2)


class DjangoVersionedStoreTests(TestCase):
    def test_failed_append_leaves_no_value_record(self):
        store = VersionedStore(
            DjangoValueStore(),
            DjangoHistoryIndex(),
            clock=lambda: 7,
            atomic=transaction.atomic,
        )
        store.set("foo", "short")
        with self.assertRaises(DuplicateVersion):
            store.set("foo", LONG)

        self.assertEqual(ValueRecord.objects.count(), 0)
        self.assertEqual(store.get("foo"), "short")

    def test_content_dedup_across_keys(self):
        store = get_store()
        store.set("a", LONG)
        store.set("b", LONG)

        self.assertEqual(ValueRecord.objects.count(), 1)
        self.assertEqual(
            HistoryEntry.objects.filter(vid=content_hash(LONG)).count(), 2
        )
        self.assertEqual(store.get("b"), LONG.strip())

    @override_settings(KVLOG_INLINE_THRESHOLD=3)
    def test_inline_threshold_from_settings(self):
        entry, value, created = set_value("foo", "abcd")
        self.assertTrue(created)
        self.assertEqual(value, "abcd")
        self.assertIsInstance(entry.value_ref, Reference)
        self.assertEqual(read_value("foo")[1], "abcd")

    def test_read_value_at(self):
        first, _, _ = set_value("foo", "v1")
        set_value("foo", "v2")

        entry, value = read_value("foo", at=first.timestamp)
        self.assertEqual((entry, value), (first, "v1"))

    def test_read_history_pages(self):
        for value in ("v1", "v2", "v3"):
            set_value("foo", value)

        versions, has_more = read_history("foo", limit=2)
        self.assertEqual([value for _, value in versions], ["v3", "v2"])
        self.assertTrue(has_more)

        versions, has_more = read_history("foo", limit=3)
        self.assertEqual(len(versions), 3)
        self.assertFalse(has_more)

    def test_read_history_does_not_resolve_entries_beyond_page(self):
        index = DjangoHistoryIndex()
        index.append("foo", 1, Reference("0" * 40))
        index.append("foo", 2, Inline("ok"))

        versions, has_more = read_history("foo", limit=1)
        self.assertEqual(versions, [(2, "ok")])
        self.assertTrue(has_more)

        with self.assertRaises(NotFound):
            read_history("foo", limit=2)

    def test_default_store_rejects_overlong_key(self):
        with self.assertRaises(ValueError):
            set_value("k" * (MAX_KEY_LENGTH + 1), "value")
        self.assertFalse(HistoryEntry.objects.exists())

    def test_value_store_scope_is_a_transaction(self):
        store = VersionedStore(DjangoValueStore(), DjangoHistoryIndex(), clock=lambda: 7)
        store.set("foo", "short")
        with self.assertRaises(DuplicateVersion):
            store.set("foo", LONG)
        self.assertEqual(ValueRecord.objects.count(), 0)

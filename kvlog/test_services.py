import itertools
from unittest.mock import patch

from django.test import SimpleTestCase

from kvlog.deadline import Deadline
from kvlog.exceptions import Cancelled, DeadlineExceeded, DuplicateVersion, NotFound
from kvlog.memory import MemoryHistoryIndex, MemoryValueStore
from kvlog.records import Inline, Reference, content_hash
from kvlog.services import VersionedStore

LONG = "lorem ipsum " * 40


class VersionedStoreTests(SimpleTestCase):
    def setUp(self):
        self.values = MemoryValueStore()
        self.index = MemoryHistoryIndex()
        self.ticks = itertools.count(1000, 10)
        self.store = VersionedStore(
            self.values, self.index, clock=lambda: next(self.ticks)
        )

    def history(self, key):
        with self.store.history(key) as versions:
            return list(versions)

    def test_set_twice_records_one_version(self):
        first, created = self.store.set("foo", "bar")
        second, created_again = self.store.set("foo", "bar")

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first, second)
        self.assertEqual(len(self.history("foo")), 1)

    def test_history_is_newest_first(self):
        values = ["bar", "baz", "beg", "bet", "bit", "bog", "bot", "bug"]
        for value in values:
            self.store.set("foo", value)

        history = self.history("foo")
        self.assertEqual([value for _, value in history], list(reversed(values)))
        self.assertEqual([ts for ts, _ in history], sorted((ts for ts, _ in history), reverse=True))

    def test_get_returns_latest(self):
        self.store.set("foo", "v1")
        self.store.set("foo", "v2")
        self.assertEqual(self.store.get("foo"), "v2")

    def test_reverting_to_an_older_value_records_a_version(self):
        for value in ("v1", "v2", "v1"):
            self.store.set("foo", value)
        self.assertEqual([value for _, value in self.history("foo")], ["v1", "v2", "v1"])

    def test_get_at_returns_earliest_version_at_or_after(self):
        t0 = 0
        for value in ("v1", "v2", "v3"):
            self.store.set("foo", value)

        self.assertEqual(self.store.get_at("foo", t0), "v1")
        self.assertEqual(self.store.get_at("foo", 1000), "v1")
        self.assertEqual(self.store.get_at("foo", 1001), "v2")
        self.assertEqual(self.store.get_at("foo", 1020), "v3")
        with self.assertRaises(NotFound):
            self.store.get_at("foo", 1021)

    def test_missing_key_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.store.get("nonexistent")
        with self.assertRaises(NotFound):
            self.store.get_at("nonexistent", 0)
        self.assertEqual(self.history("nonexistent"), [])

    def test_not_found_is_a_key_error(self):
        with self.assertRaises(KeyError):
            self.store.get("nonexistent")

    def test_long_values_are_deduplicated_across_keys(self):
        self.store.set("a", LONG)
        self.store.set("b", LONG)

        self.assertEqual(len(self.values), 1)
        self.assertEqual(len(self.index), 2)
        expected = Reference(content_hash(LONG))
        self.assertEqual(self.store.get_entry("a").value_ref, expected)
        self.assertEqual(self.store.get_entry("b").value_ref, expected)

    def test_round_trip_at_inline_boundary(self):
        threshold = self.store.inline_threshold
        cases = {
            "short": "  hello world  ",
            "boundary": "b" * threshold,
            "over": "o" * (threshold + 1),
            "empty": "   ",
            "long": LONG,
        }
        for key, payload in cases.items():
            self.store.set(key, payload)
            self.assertEqual(self.store.get(key), payload.strip())

        self.assertIsInstance(self.store.get_entry("boundary").value_ref, Inline)
        self.assertIsInstance(self.store.get_entry("over").value_ref, Reference)

    def test_inline_and_reference_never_compare_equal(self):
        self.store.inline_threshold = 5
        self.store.set("foo", "abcdef")
        self.store.inline_threshold = 200
        _, created = self.store.set("foo", "abcdef")
        self.assertTrue(created)
        self.assertEqual(self.store.get("foo"), "abcdef")

    def test_repeated_timestamp_raises_duplicate_version(self):
        store = VersionedStore(self.values, self.index, clock=lambda: 42)
        store.set("foo", "v1")
        with self.assertRaises(DuplicateVersion) as ctx:
            store.set("foo", "v2")
        self.assertEqual(ctx.exception.timestamp, 42)
        self.assertEqual(store.get("foo"), "v1")

    def test_same_timestamp_on_different_keys_is_allowed(self):
        store = VersionedStore(self.values, self.index, clock=lambda: 42)
        store.set("foo", "v1")
        store.set("bar", "v1")
        self.assertEqual(len(self.index), 2)

    def test_empty_key_is_rejected(self):
        with self.assertRaises(ValueError):
            self.store.set("", "value")

    def test_overlong_key_is_rejected(self):
        store = VersionedStore(self.values, self.index, max_key_length=8)
        store.set("a" * 8, "value")
        with self.assertRaises(ValueError):
            store.set("a" * 9, "value")
        self.assertEqual(len(self.index), 1)

    def test_failed_set_leaves_no_value_record(self):
        store = VersionedStore(self.values, self.index, clock=lambda: 42)
        store.set("foo", "short")
        with self.assertRaises(DuplicateVersion):
            store.set("foo", "x" * 500)

        self.assertEqual(len(self.values), 0)
        self.assertEqual(store.get("foo"), "short")

    def test_failed_set_keeps_value_shared_with_earlier_write(self):
        store = VersionedStore(self.values, self.index, clock=lambda: 42)
        store.set("bar", LONG)
        store.set("foo", "short")
        with self.assertRaises(DuplicateVersion):
            store.set("foo", LONG)

        self.assertEqual(len(self.values), 1)
        self.assertEqual(store.get("bar"), LONG.strip())

    def test_unchanged_long_value_does_not_touch_value_store(self):
        self.store.set("foo", LONG)
        with patch.object(self.values, "put") as put:
            _, created = self.store.set("foo", LONG)
        self.assertFalse(created)
        put.assert_not_called()

    def test_dangling_reference_raises_not_found(self):
        self.index.append("foo", 1, Reference("0" * 40))
        with self.assertRaises(NotFound):
            self.store.get("foo")

    def test_history_resolves_lazily(self):
        self.store.set("foo", "v1")
        self.index.append("foo", 10**6, Reference("0" * 40))

        with self.store.history("foo") as versions:
            with self.assertRaises(NotFound):
                next(versions)

    def test_history_iterations_are_independent(self):
        for value in ("v1", "v2", "v3"):
            self.store.set("foo", value)

        first = self.store.history("foo")
        second = self.store.history("foo")
        self.assertEqual(next(first)[1], "v3")
        self.assertEqual(next(first)[1], "v2")
        self.assertEqual(next(second)[1], "v3")
        first.close()
        second.close()

    def test_closed_history_stops(self):
        for value in ("v1", "v2"):
            self.store.set("foo", value)

        with self.store.history("foo") as versions:
            next(versions)
        self.assertEqual(list(versions), [])


class DeadlineTests(SimpleTestCase):
    def setUp(self):
        self.values = MemoryValueStore()
        self.index = MemoryHistoryIndex()
        self.store = VersionedStore(self.values, self.index)

    def test_cancelled_set_writes_nothing(self):
        deadline = Deadline()
        deadline.cancel()
        with self.assertRaises(Cancelled):
            self.store.set("foo", LONG, deadline=deadline)
        self.assertEqual(len(self.values), 0)
        self.assertEqual(len(self.index), 0)

    def test_expired_deadline_aborts_reads(self):
        self.store.set("foo", "v1")
        deadline = Deadline(timeout=0)
        with self.assertRaises(DeadlineExceeded):
            self.store.get("foo", deadline=deadline)
        with self.assertRaises(DeadlineExceeded):
            self.store.get_at("foo", 0, deadline=deadline)
        with self.assertRaises(DeadlineExceeded):
            self.store.history("foo", deadline=deadline)

    def test_cancel_during_history(self):
        for value in ("v1", "v2", "v3"):
            self.store.set("foo", value)

        deadline = Deadline(timeout=60)
        with self.store.history("foo", deadline=deadline) as versions:
            self.assertEqual(next(versions)[1], "v3")
            deadline.cancel()
            with self.assertRaises(Cancelled):
                next(versions)

    def test_deadline_reports_remaining_time(self):
        now = [100.0]
        deadline = Deadline(timeout=5, clock=lambda: now[0])
        self.assertEqual(deadline.remaining(), 5)
        now[0] = 104.0
        deadline.check()
        now[0] = 105.0
        self.assertTrue(deadline.expired)
        with self.assertRaises(DeadlineExceeded):
            deadline.check()
        self.assertIsNone(Deadline().remaining())

import time
from unittest.mock import patch

from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from kvlog.exceptions import BackendError, DuplicateVersion
from kvlog.models import MAX_KEY_LENGTH, HistoryEntry, ValueRecord


class KeyValueApiTests(APITestCase):
    def detail_url(self, key):
        return reverse("kvlog:kv-detail", args=[key])

    def history_url(self, key):
        return reverse("kvlog:kv-history", args=[key])

    def test_put_and_read_key(self):
        url = self.detail_url("alpha")
        response = self.client.put(url, {"value": "first"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["value"], "first")

        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["key"], "alpha")
        self.assertEqual(response.data["value"], "first")
        self.assertIsInstance(response.data["timestamp"], int)

    def test_repeated_put_is_a_noop(self):
        url = self.detail_url("alpha")
        first = self.client.put(url, {"value": "same"}, format="json")
        second = self.client.put(url, {"value": "  same\n"}, format="json")

        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data["timestamp"], first.data["timestamp"])
        self.assertEqual(HistoryEntry.objects.filter(key="alpha").count(), 1)

    def test_put_trims_whitespace(self):
        url = self.detail_url("alpha")
        response = self.client.put(url, {"value": "  padded \t"}, format="json")
        self.assertEqual(response.data["value"], "padded")
        self.assertEqual(self.client.get(url).data["value"], "padded")

    def test_missing_key_returns_404(self):
        response = self.client.get(self.detail_url("missing"))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.get(self.detail_url("missing"), {"at": time.time_ns()})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_read_at_returns_first_version_after_instant(self):
        url = self.detail_url("alpha")
        t0 = time.time_ns()
        for value in ("v1", "v2", "v3"):
            self.client.put(url, {"value": value}, format="json")

        response = self.client.get(url, {"at": t0})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["value"], "v1")

        response = self.client.get(url)
        self.assertEqual(response.data["value"], "v3")

    def test_read_at_after_last_version_returns_404(self):
        url = self.detail_url("alpha")
        self.client.put(url, {"value": "v1"}, format="json")

        response = self.client.get(url, {"at": time.time_ns() + 10**9})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_read_at_rejects_non_integer(self):
        response = self.client.get(self.detail_url("alpha"), {"at": "yesterday"})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_history_returns_versions_newest_first(self):
        url = self.detail_url("alpha")
        for value in ("v1", "v2", "v3"):
            self.client.put(url, {"value": value}, format="json")

        response = self.client.get(self.history_url("alpha"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 3)
        self.assertFalse(response.data["has_more"])
        self.assertEqual(
            [item["value"] for item in response.data["results"]], ["v3", "v2", "v1"]
        )
        timestamps = [item["timestamp"] for item in response.data["results"]]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))

    def test_history_limit_reports_more(self):
        url = self.detail_url("alpha")
        for value in ("v1", "v2", "v3"):
            self.client.put(url, {"value": value}, format="json")

        response = self.client.get(self.history_url("alpha"), {"limit": 2})
        self.assertEqual(response.data["count"], 2)
        self.assertTrue(response.data["has_more"])
        self.assertEqual([item["value"] for item in response.data["results"]], ["v3", "v2"])

    @override_settings(KVLOG_MAX_HISTORY_PAGE_SIZE=5)
    def test_history_rejects_invalid_limit(self):
        for limit in (0, 6, "many"):
            response = self.client.get(self.history_url("alpha"), {"limit": limit})
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_history_of_unknown_key_is_empty(self):
        response = self.client.get(self.history_url("missing"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 0)
        self.assertEqual(response.data["results"], [])

    def test_long_values_are_shared_between_keys(self):
        payload = "x" * 500
        for key in ("alpha", "beta"):
            response = self.client.put(self.detail_url(key), {"value": payload}, format="json")
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        self.assertEqual(ValueRecord.objects.count(), 1)
        vids = set(HistoryEntry.objects.values_list("vid", flat=True))
        self.assertEqual(vids, {ValueRecord.objects.get().pk})
        self.assertEqual(self.client.get(self.detail_url("beta")).data["value"], payload)

    def test_keys_may_contain_slashes(self):
        url = self.detail_url("config/db/host")
        response = self.client.put(url, {"value": "v1"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.client.put(url, {"value": "v2"}, format="json")

        response = self.client.get(url)
        self.assertEqual(response.data["key"], "config/db/host")
        self.assertEqual(response.data["value"], "v2")

        response = self.client.get(self.history_url("config/db/host"))
        self.assertEqual(response.data["key"], "config/db/host")
        self.assertEqual([item["value"] for item in response.data["results"]], ["v2", "v1"])

    def test_put_rejects_overlong_key(self):
        response = self.client.put(
            self.detail_url("k" * (MAX_KEY_LENGTH + 1)), {"value": "v"}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("key", response.data)
        self.assertFalse(HistoryEntry.objects.exists())

    def test_put_requires_value(self):
        response = self.client.put(self.detail_url("alpha"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_duplicate_version_returns_409(self):
        with patch("kvlog.views.set_value", side_effect=DuplicateVersion("alpha", 1)):
            response = self.client.put(self.detail_url("alpha"), {"value": "v"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_backend_error_returns_503(self):
        with patch("kvlog.views.read_value", side_effect=BackendError("history latest failed")):
            response = self.client.get(self.detail_url("alpha"))
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

    @override_settings(KVLOG_REQUEST_TIMEOUT=0)
    def test_expired_deadline_returns_504_and_writes_nothing(self):
        response = self.client.put(self.detail_url("alpha"), {"value": "v"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_504_GATEWAY_TIMEOUT)
        self.assertFalse(HistoryEntry.objects.exists())


class HealthCheckTests(APITestCase):
    def test_health_reports_backend(self):
        response = self.client.get(reverse("kvlog:health"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "healthy")
        self.assertTrue(response.data["backend"]["reachable"])

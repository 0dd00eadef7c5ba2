from django.db import models
from django.db.models import Q

from kvlog.records import Entry, Inline, Reference, ValueRef

MAX_KEY_LENGTH = 255


class ValueRecord(models.Model):
    """Content-addressed payload shared by any number of history entries."""

    id = models.CharField(primary_key=True, max_length=40, editable=False)
    payload = models.TextField(editable=False)

    def __str__(self) -> str:
        return self.id


class HistoryEntry(models.Model):
    """One version of a key: an inline value or a reference to a ValueRecord."""

    key = models.CharField(max_length=MAX_KEY_LENGTH, editable=False)
    ts = models.BigIntegerField(editable=False)
    value = models.TextField(null=True, blank=True, editable=False)
    vid = models.CharField(max_length=40, null=True, blank=True, editable=False)

    class Meta:
        ordering = ["key", "-ts"]
        verbose_name_plural = "history entries"
        constraints = [
            models.UniqueConstraint(fields=["key", "ts"], name="k_ts"),
            models.CheckConstraint(
                condition=(
                    Q(value__isnull=False, vid__isnull=True)
                    | Q(value__isnull=True, vid__isnull=False)
                ),
                name="value_xor_vid",
            ),
        ]
        indexes = [
            models.Index(fields=["key", "-ts"], name="k_ts_desc"),
        ]

    def __str__(self) -> str:
        return f"{self.key}@{self.ts}"

    @property
    def value_ref(self) -> ValueRef:
        if self.vid is not None:
            return Reference(self.vid)
        return Inline(self.value)

    @classmethod
    def from_value_ref(cls, key: str, ts: int, value_ref: ValueRef) -> "HistoryEntry":
        if isinstance(value_ref, Reference):
            return cls(key=key, ts=ts, vid=value_ref.vid)
        return cls(key=key, ts=ts, value=value_ref.value)

    def to_entry(self) -> Entry:
        return Entry(key=self.key, timestamp=self.ts, value_ref=self.value_ref)

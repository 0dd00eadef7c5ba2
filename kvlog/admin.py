from django.contrib import admin

from kvlog.models import HistoryEntry, ValueRecord


class ReadOnlyAdmin(admin.ModelAdmin):
    """History and values are append-only; the admin only browses them."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(HistoryEntry)
class HistoryEntryAdmin(ReadOnlyAdmin):
    list_display = ("key", "ts", "value", "vid")
    search_fields = ("key",)
    ordering = ("key", "-ts")


@admin.register(ValueRecord)
class ValueRecordAdmin(ReadOnlyAdmin):
    list_display = ("id",)
    search_fields = ("id",)

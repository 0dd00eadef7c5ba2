from django.urls import path

from kvlog.views import HealthCheckView, KeyHistoryView, KeyValueView

app_name = "kvlog"

urlpatterns = [
    path("kv/<path:key>/history/", KeyHistoryView.as_view(), name="kv-history"),
    path("kv/<path:key>/", KeyValueView.as_view(), name="kv-detail"),
    path("health/", HealthCheckView.as_view(), name="health"),
]

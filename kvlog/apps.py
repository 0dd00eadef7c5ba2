from django.apps import AppConfig


class KVLogConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "kvlog"
    verbose_name = "Versioned key/value log"

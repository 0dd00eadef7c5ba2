from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ValueRecord",
            fields=[
                (
                    "id",
                    models.CharField(
                        editable=False, max_length=40, primary_key=True, serialize=False
                    ),
                ),
                ("payload", models.TextField(editable=False)),
            ],
        ),
        migrations.CreateModel(
            name="HistoryEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("key", models.CharField(editable=False, max_length=255)),
                ("ts", models.BigIntegerField(editable=False)),
                ("value", models.TextField(blank=True, editable=False, null=True)),
                ("vid", models.CharField(blank=True, editable=False, max_length=40, null=True)),
            ],
            options={
                "verbose_name_plural": "history entries",
                "ordering": ["key", "-ts"],
                "indexes": [models.Index(fields=["key", "-ts"], name="k_ts_desc")],
                "constraints": [
                    models.UniqueConstraint(fields=("key", "ts"), name="k_ts"),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("value__isnull", False), ("vid__isnull", True)),
                            models.Q(("value__isnull", True), ("vid__isnull", False)),
                            _connector="OR",
                        ),
                        name="value_xor_vid",
                    ),
                ],
            },
        ),
    ]

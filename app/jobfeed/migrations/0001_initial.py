import uuid

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="JobSnapshot",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "external_job_id",
                    models.CharField(
                        help_text="Job ID in the case-management system",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "snapshot",
                    models.JSONField(
                        blank=True,
                        help_text="Last normalized observation of the job",
                        null=True,
                    ),
                ),
                (
                    "normalizer_version",
                    models.PositiveSmallIntegerField(
                        default=2,
                        help_text="Normalizer version that produced the snapshot",
                    ),
                ),
                (
                    "watched_until",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Poll the job until this time",
                        null=True,
                    ),
                ),
                (
                    "last_polled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the job was last fetched from case management",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Job Snapshot",
                "verbose_name_plural": "Job Snapshots",
                "ordering": ["-created_at"],
            },
        ),
    ]

"""
Seed the celery-beat schedule for the job-feed poll transport.

poll_watched_jobs runs every JOBFEED_POLL_INTERVAL_SECONDS and returns
immediately unless JOBFEED_TRANSPORT is "poll".
"""

from django.conf import settings
from django.db import migrations

TASK_NAME = "Poll Watched Case-Management Jobs"


def create_periodic_task(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=getattr(settings, "JOBFEED_POLL_INTERVAL_SECONDS", 10),
        period="seconds",
    )
    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "jobfeed.tasks.poll_watched_jobs",
            "interval": schedule,
            "enabled": True,
            "description": "Re-diffs watched jobs against their stored snapshots.",
        },
    )


def remove_periodic_task(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")
    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("jobfeed", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]

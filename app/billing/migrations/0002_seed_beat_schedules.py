"""
Seed celery-beat schedules for the billing periodic tasks.

- retry_failed_webhooks: every 5 minutes
- reconcile_stale_charges: every 10 minutes
- retry_invoice_drift: every 15 minutes
- evaluate_due_jobs: every 15 minutes
"""

from django.db import migrations

PERIODIC_TASKS = [
    (
        "Retry Failed Stripe Webhooks",
        "billing.tasks.retry_failed_webhooks",
        5,
        "Re-drives FAILED and stuck PROCESSING webhook events.",
    ),
    (
        "Reconcile Stale In-Flight Charges",
        "billing.tasks.reconcile_stale_charges",
        10,
        "Settles charge attempts whose outcome was never learned, "
        "re-submitting with the original idempotency key.",
    ),
    (
        "Retry Invoice Drift",
        "billing.tasks.retry_invoice_drift",
        15,
        "Retries marking case-management invoices paid for open drift records.",
    ),
    (
        "Evaluate Due Billing Jobs",
        "billing.tasks.evaluate_due_jobs",
        15,
        "Evaluates signed, chargeable jobs whose billing date has arrived.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for billing."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for name, task, minutes, description in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=minutes,
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[name for name, _, _, _ in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]

"""
Celery configuration for the deferred-billing service.

Celery runs:
- Webhook re-drives and retries (billing.tasks)
- Stale charge reconciliation and drift auto-heal (billing.tasks)
- The job-feed poll transport (jobfeed.tasks)

Redis is both the message broker and result backend. Periodic schedules
live in the database (django-celery-beat DatabaseScheduler) and are seeded
by data migrations in billing and jobfeed.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()

"""
Job feed app configuration.

This app watches case-management jobs for changes:
- Pure change detection between two observations (change_feed.diff)
- Poll and push transports behind JobWatcher.refresh
- WebSocket fan-out to subscribed clients (JobFeedConsumer)
"""

from django.apps import AppConfig


class JobFeedAppConfig(AppConfig):
    """Configuration for the job feed application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "jobfeed"
    verbose_name = "Job Feed"

    def ready(self):
        import jobfeed.config  # noqa: F401

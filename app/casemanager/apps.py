from django.apps import AppConfig


class CaseManagerConfig(AppConfig):
    """Configuration for the case-management integration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "casemanager"
    verbose_name = "Case Management"

    def ready(self):
        import casemanager.config  # noqa: F401

from django.contrib import admin

from jobfeed.models import JobSnapshot


@admin.register(JobSnapshot)
class JobSnapshotAdmin(admin.ModelAdmin):
    list_display = [
        "external_job_id",
        "normalizer_version",
        "watched_until",
        "last_polled_at",
        "updated_at",
    ]
    search_fields = ["external_job_id"]
    readonly_fields = [
        "id",
        "snapshot",
        "normalizer_version",
        "last_polled_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-updated_at"]

"""
URL configuration for the job feed app.

All routes are prefixed with /api/v1/jobfeed/ when included in the main
URLconf. The WebSocket route lives in jobfeed.routing.
"""

from django.urls import path

from jobfeed import views

app_name = "jobfeed"

urlpatterns = [
    path(
        "jobs/<str:external_job_id>/refresh/",
        views.RefreshJobView.as_view(),
        name="job-refresh",
    ),
    path(
        "jobs/<str:external_job_id>/notify/",
        views.ForceNotificationView.as_view(),
        name="job-notify",
    ),
]

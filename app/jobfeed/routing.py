"""
WebSocket URL routing for the job feed.

URL Patterns:
    ws/jobs/ - Subscribe to change events for any number of jobs
"""

from django.urls import path

from jobfeed import consumers

websocket_urlpatterns = [
    path("ws/jobs/", consumers.JobFeedConsumer.as_asgi()),
]

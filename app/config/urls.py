"""
URL configuration for the deferred-billing service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/billing/               - Billing endpoints
        setup/                     - Start card setup (SetupIntent)
        setup/confirm/             - Record the verified card
        config/                    - Publishable key for the card form
        customers/{id}/payment-methods/ - List stored cards
        payment-methods/{pm_id}/   - Detach a card
        jobs/{id}/charge/          - Manual charge or retry
        jobs/{id}/payment-status/  - Billing summary for a job
        charges/{id}/refund/       - Refund a charge (admin)
        drift/                     - Open cross-system drift (admin)
        webhooks/stripe/           - Stripe webhook endpoint (POST)
    /api/v1/jobfeed/               - Job change feed
        jobs/{id}/refresh/         - Re-diff a job now
        jobs/{id}/notify/          - Broadcast a synthetic event (admin)
    ws/jobs/                       - WebSocket change feed (see jobfeed.routing)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("billing/", include("billing.urls")),
    path("jobfeed/", include("jobfeed.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Billing Admin"
admin.site.site_title = "Billing Admin Portal"
admin.site.index_title = "Deferred billing operations"

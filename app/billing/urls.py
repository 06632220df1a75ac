"""
URL configuration for the billing app.

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("billing/", include("billing.urls")),
    ]
"""

from django.urls import path

from billing import views
from billing.webhooks.views import stripe_webhook

app_name = "billing"

urlpatterns = [
    # Card setup
    path("setup/", views.BeginSetupView.as_view(), name="setup"),
    path("setup/confirm/", views.ConfirmSetupView.as_view(), name="setup-confirm"),
    path("config/", views.GatewayConfigView.as_view(), name="config"),
    # Stored payment methods
    path(
        "customers/<uuid:customer_id>/payment-methods/",
        views.PaymentMethodListView.as_view(),
        name="payment-methods",
    ),
    path(
        "payment-methods/<str:payment_method_id>/",
        views.PaymentMethodDetailView.as_view(),
        name="payment-method-detail",
    ),
    # Charges
    path("jobs/<uuid:job_id>/charge/", views.ChargeJobView.as_view(), name="job-charge"),
    path(
        "jobs/<uuid:job_id>/payment-status/",
        views.PaymentStatusView.as_view(),
        name="job-payment-status",
    ),
    path(
        "charges/<uuid:charge_attempt_id>/refund/",
        views.RefundChargeView.as_view(),
        name="charge-refund",
    ),
    # Operations
    path("drift/", views.DriftListView.as_view(), name="drift-list"),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]

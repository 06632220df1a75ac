"""
DRF views for the billing app.

Endpoints:
    POST   /api/v1/billing/setup/ - Start card setup (SetupIntent)
    POST   /api/v1/billing/setup/confirm/ - Record the verified card
    GET    /api/v1/billing/customers/{id}/payment-methods/ - List stored cards
    DELETE /api/v1/billing/payment-methods/{pm_id}/ - Detach a card (admin)
    POST   /api/v1/billing/jobs/{id}/charge/ - Manual charge or retry (admin)
    GET    /api/v1/billing/jobs/{id}/payment-status/ - Billing summary
    POST   /api/v1/billing/charges/{id}/refund/ - Refund a charge (admin)
    GET    /api/v1/billing/drift/ - Open cross-system drift (admin)
    GET    /api/v1/billing/config/ - Publishable key for the card form
    POST   /api/v1/billing/webhooks/stripe/ - Stripe webhook endpoint

Security:
    - All endpoints require a bearer token except the webhook
    - Charge, card removal, refund and drift endpoints require a staff user
    - Webhook verifies the Stripe signature

Errors:
    BaseApplicationError subclasses are rendered with to_dict() and the
    HTTP status from ERROR_STATUS (closest class in the MRO wins).
    UpstreamUnavailable is always 503, including the Stripe transient
    errors that also derive from BillingError.
"""

from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

from billing.exceptions import (
    BillingError,
    ChargeDeclined,
    NoPaymentMethod,
    SetupFailed,
    SignatureInvalid,
    UpstreamUnavailable,
)
from billing.models import BillingCustomer, BillingJob, CrossSystemDrift
from billing.serializers import (
    BeginSetupSerializer,
    ConfirmSetupSerializer,
    CrossSystemDriftSerializer,
    GatewayConfigSerializer,
    PaymentMethodSerializer,
    PaymentStatusSerializer,
    RefundRequestSerializer,
    RefundSerializer,
    SetupSessionSerializer,
    TriggerDecisionSerializer,
)
from billing.services import BillingTrigger, PaymentMethodVault

logger = logging.getLogger(__name__)


ERROR_STATUS: dict[type[BaseApplicationError], int] = {
    SetupFailed: status.HTTP_402_PAYMENT_REQUIRED,
    ChargeDeclined: status.HTTP_402_PAYMENT_REQUIRED,
    NoPaymentMethod: status.HTTP_409_CONFLICT,
    SignatureInvalid: status.HTTP_400_BAD_REQUEST,
    UpstreamUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    BillingError: status.HTTP_400_BAD_REQUEST,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ExternalServiceError: status.HTTP_502_BAD_GATEWAY,
}


def status_for(exc: BaseApplicationError) -> int:
    if isinstance(exc, UpstreamUnavailable):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    for klass in type(exc).__mro__:
        if klass in ERROR_STATUS:
            return ERROR_STATUS[klass]
    return status.HTTP_400_BAD_REQUEST


def error_response(exc: BaseApplicationError) -> Response:
    return Response(exc.to_dict(), status=status_for(exc))


# =============================================================================
# Card Setup
# =============================================================================


class BeginSetupView(APIView):
    """
    Start a deferred card setup.

    POST /api/v1/billing/setup/

    Request body:
        {"email": "ops@firm.test", "name": "Firm LLP", "job_id": "<uuid>"}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="begin_card_setup",
        summary="Start card setup",
        description="Create a SetupIntent for off-session billing. No funds move.",
        request=BeginSetupSerializer,
        responses={
            201: SetupSessionSerializer,
            400: OpenApiResponse(description="Invalid request"),
            503: OpenApiResponse(description="Stripe unavailable"),
        },
        tags=["Billing - Setup"],
    )
    def post(self, request):
        serializer = BeginSetupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        job = None
        if data.get("job_id"):
            job = get_object_or_404(BillingJob, pk=data["job_id"])

        vault = PaymentMethodVault()
        try:
            customer = vault.ensure_customer(data["email"], data.get("name"))
            session = vault.begin_setup(customer, job=job)
        except BaseApplicationError as e:
            return error_response(e)

        payload = SetupSessionSerializer(
            {
                "setup_token": session.setup_token,
                "client_secret": session.client_secret,
                "customer_id": session.customer_id,
                "publishable_key": vault.get_publishable_key(),
            }
        ).data
        return Response(payload, status=status.HTTP_201_CREATED)


class ConfirmSetupView(APIView):
    """
    Record the payment method of a finished card setup.

    POST /api/v1/billing/setup/confirm/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="confirm_card_setup",
        summary="Confirm card setup",
        request=ConfirmSetupSerializer,
        responses={
            200: PaymentMethodSerializer,
            402: OpenApiResponse(description="Card verification declined or incomplete"),
        },
        tags=["Billing - Setup"],
    )
    def post(self, request):
        serializer = ConfirmSetupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            method = PaymentMethodVault().confirm_setup(
                serializer.validated_data["setup_token"]
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(PaymentMethodSerializer(method).data)


class PaymentMethodListView(APIView):
    """
    List stored cards for a customer.

    GET /api/v1/billing/customers/{customer_id}/payment-methods/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payment_methods",
        summary="List stored cards",
        responses={200: PaymentMethodSerializer(many=True)},
        tags=["Billing - Payment Methods"],
    )
    def get(self, request, customer_id):
        customer = get_object_or_404(BillingCustomer, pk=customer_id)
        try:
            methods = PaymentMethodVault().list_methods(customer.stripe_customer_id)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(PaymentMethodSerializer(methods, many=True).data)


class PaymentMethodDetailView(APIView):
    """
    Detach a stored card.

    DELETE /api/v1/billing/payment-methods/{payment_method_id}/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="remove_payment_method",
        summary="Remove stored card",
        description=(
            "Detach immediately. Jobs still referencing the card report "
            "NO_PAYMENT_METHOD on their next charge."
        ),
        responses={204: None, 409: OpenApiResponse(description="Card already detached")},
        tags=["Billing - Payment Methods"],
    )
    def delete(self, request, payment_method_id):
        try:
            PaymentMethodVault().remove_method(payment_method_id)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(status=status.HTTP_204_NO_CONTENT)


class GatewayConfigView(APIView):
    """GET /api/v1/billing/config/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_billing_config",
        summary="Card form configuration",
        responses={200: GatewayConfigSerializer},
        tags=["Billing - Setup"],
    )
    def get(self, request):
        vault = PaymentMethodVault()
        return Response(
            GatewayConfigSerializer(
                {
                    "publishable_key": vault.get_publishable_key(),
                    "currency": vault.config.currency,
                }
            ).data
        )


# =============================================================================
# Charges
# =============================================================================


class ChargeJobView(APIView):
    """
    Manually charge a job, or retry a failed charge.

    POST /api/v1/billing/jobs/{job_id}/charge/

    Unmet conditions are reported in the decision with 200. Manual charges
    ignore the automatic retry cap and the billing date.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="charge_job",
        summary="Charge job",
        request=None,
        responses={
            200: TriggerDecisionSerializer,
            402: OpenApiResponse(description="Card declined"),
            409: OpenApiResponse(description="No payment method"),
            503: OpenApiResponse(description="Outcome unknown; job stays in flight"),
        },
        tags=["Billing - Charges"],
    )
    def post(self, request, job_id):
        job = get_object_or_404(BillingJob.objects.select_related("customer"), pk=job_id)
        try:
            decision = BillingTrigger().initiate_charge(job, source="manual", manual=True)
        except BaseApplicationError as e:
            return error_response(e)

        logger.info(
            "Manual charge requested",
            extra={
                "job_id": str(job.id),
                "user_id": request.user.pk,
                "outcome": decision.outcome.value,
            },
        )
        return Response(TriggerDecisionSerializer(decision.to_dict()).data)


class PaymentStatusView(APIView):
    """GET /api/v1/billing/jobs/{job_id}/payment-status/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment_status",
        summary="Job payment status",
        parameters=[
            OpenApiParameter(
                name="include_gateway",
                type=bool,
                location=OpenApiParameter.QUERY,
                description="Also list the job's PaymentIntents from Stripe",
                required=False,
            ),
        ],
        responses={200: PaymentStatusSerializer},
        tags=["Billing - Charges"],
    )
    def get(self, request, job_id):
        job = get_object_or_404(BillingJob.objects.select_related("customer"), pk=job_id)
        include_gateway = request.query_params.get("include_gateway", "").lower() == "true"
        try:
            summary = BillingTrigger().payment_status(job, include_gateway=include_gateway)
        except BaseApplicationError as e:
            return error_response(e)
        return Response(summary)


class RefundChargeView(APIView):
    """
    Refund a succeeded charge, fully or partially.

    POST /api/v1/billing/charges/{charge_attempt_id}/refund/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="refund_charge",
        summary="Refund charge",
        request=RefundRequestSerializer,
        responses={
            201: RefundSerializer,
            400: OpenApiResponse(description="Invalid amount"),
            404: OpenApiResponse(description="Charge not found"),
            409: OpenApiResponse(description="Charge not refundable"),
        },
        tags=["Billing - Charges"],
    )
    def post(self, request, charge_attempt_id):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            refund = BillingTrigger().refund(
                charge_attempt_id,
                amount_cents=serializer.validated_data.get("amount_cents"),
                reason=serializer.validated_data["reason"],
                refunded_by=str(request.user.pk),
            )
        except BaseApplicationError as e:
            return error_response(e)
        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


# =============================================================================
# Drift
# =============================================================================


@extend_schema(
    operation_id="list_open_drift",
    summary="Open cross-system drift",
    description="Jobs whose case-management invoice does not reflect Stripe.",
    tags=["Billing - Operations"],
)
class DriftListView(generics.ListAPIView):
    """GET /api/v1/billing/drift/"""

    permission_classes = [IsAdminUser]
    serializer_class = CrossSystemDriftSerializer

    def get_queryset(self):
        queryset = CrossSystemDrift.objects.open().select_related("job")
        kind = self.request.query_params.get("kind")
        if kind:
            queryset = queryset.filter(kind=kind)
        return queryset

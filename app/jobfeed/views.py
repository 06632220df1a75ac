"""
DRF views for the job feed.

Endpoints:
    POST /api/v1/jobfeed/jobs/{id}/refresh/ - Re-diff a job now (push transport)
    POST /api/v1/jobfeed/jobs/{id}/notify/ - Broadcast a synthetic event (admin)
"""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from drf_spectacular.utils import OpenApiResponse, extend_schema

from casemanager.exceptions import (
    CaseManagementError,
    CaseManagementNotConfigured,
    CaseManagementNotFound,
    CaseManagementUnavailable,
)

from jobfeed.bus import force_notification
from jobfeed.serializers import (
    ForceNotificationSerializer,
    JobChangeEventSerializer,
    JobRefreshResultSerializer,
)
from jobfeed.services import JobWatcher

logger = logging.getLogger(__name__)


UPSTREAM_ERROR_STATUS = {
    CaseManagementNotFound: status.HTTP_404_NOT_FOUND,
    CaseManagementUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    CaseManagementNotConfigured: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class RefreshJobView(APIView):
    """
    Fetch a job from case management and fan out whatever changed.

    POST /api/v1/jobfeed/jobs/{external_job_id}/refresh/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="refresh_job",
        summary="Re-diff a job",
        description=(
            "Fetches the job, diffs it against the stored snapshot, runs the "
            "billing evaluation on relevant changes and notifies subscribers."
        ),
        request=None,
        responses={
            200: JobRefreshResultSerializer,
            404: OpenApiResponse(description="Job not found in case management"),
            502: OpenApiResponse(description="Case management rejected the request"),
            503: OpenApiResponse(description="Case management unavailable"),
        },
        tags=["Job Feed"],
    )
    def post(self, request, external_job_id):
        watcher = JobWatcher()
        try:
            result = watcher.refresh(external_job_id)
        except CaseManagementError as e:
            return Response(
                e.to_dict(),
                status=UPSTREAM_ERROR_STATUS.get(type(e), status.HTTP_502_BAD_GATEWAY),
            )
        except ValueError as e:
            logger.warning(f"Unusable job payload for {external_job_id}: {e}")
            return Response(
                {"error": str(e), "error_code": "INVALID_JOB_PAYLOAD", "details": {}},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(JobRefreshResultSerializer(result.data).data)


class ForceNotificationView(APIView):
    """
    Broadcast a synthetic change event to a job's subscribers.

    POST /api/v1/jobfeed/jobs/{external_job_id}/notify/

    Request body:
        {"kind": "job_updated", "data": {"note": "Invoice corrected"}}
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="force_job_notification",
        summary="Broadcast a synthetic job event",
        request=ForceNotificationSerializer,
        responses={202: JobChangeEventSerializer},
        tags=["Job Feed"],
    )
    def post(self, request, external_job_id):
        serializer = ForceNotificationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        event = force_notification(
            external_job_id,
            serializer.validated_data["kind"],
            serializer.validated_data.get("data"),
        )
        return Response(
            JobChangeEventSerializer(event.to_dict()).data,
            status=status.HTTP_202_ACCEPTED,
        )

"""
Serializers for the job feed API.
"""

from rest_framework import serializers

from jobfeed.change_feed import ChangeKind


class JobChangeEventSerializer(serializers.Serializer):
    job_id = serializers.CharField()
    kind = serializers.ChoiceField(choices=[kind.value for kind in ChangeKind])
    data = serializers.DictField()
    timestamp = serializers.CharField(allow_null=True)


class JobRefreshResultSerializer(serializers.Serializer):
    """Result of re-diffing one job."""

    external_job_id = serializers.CharField()
    baseline = serializers.BooleanField(
        help_text="True when this was the first observation (no events)",
    )
    events = JobChangeEventSerializer(many=True)
    billing = serializers.DictField(
        allow_null=True,
        help_text="Billing trigger decision, when the change prompted an evaluation",
    )


class ForceNotificationSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(
        choices=[kind.value for kind in ChangeKind],
        default=ChangeKind.JOB_UPDATED.value,
    )
    data = serializers.DictField(required=False, default=dict)

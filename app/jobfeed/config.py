"""
Job feed settings.

JobFeedConfig is an immutable snapshot of the JOBFEED_* settings, passed
into JobWatcher and read by the poll task.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver

TRANSPORT_POLL = "poll"
TRANSPORT_PUSH = "push"


@dataclass(frozen=True)
class JobFeedConfig:
    """
    Attributes:
        transport: "poll" (celery-beat re-diffs watched jobs) or "push"
            (upstream calls the refresh endpoint)
        poll_interval_seconds: Beat interval for poll_watched_jobs
        poll_batch_size: Jobs re-diffed per poll cycle
        watch_ttl_minutes: How long a subscription keeps a job watched
        liveness_timeout_seconds: Idle time before a socket is closed
    """

    transport: str = TRANSPORT_POLL
    poll_interval_seconds: int = 10
    poll_batch_size: int = 5
    watch_ttl_minutes: int = 60
    liveness_timeout_seconds: int = 60

    @property
    def polling(self) -> bool:
        return self.transport == TRANSPORT_POLL

    @classmethod
    def from_settings(cls) -> JobFeedConfig:
        return cls(
            transport=getattr(settings, "JOBFEED_TRANSPORT", TRANSPORT_POLL),
            poll_interval_seconds=getattr(settings, "JOBFEED_POLL_INTERVAL_SECONDS", 10),
            poll_batch_size=getattr(settings, "JOBFEED_POLL_BATCH_SIZE", 5),
            watch_ttl_minutes=getattr(settings, "JOBFEED_WATCH_TTL_MINUTES", 60),
            liveness_timeout_seconds=getattr(settings, "JOBFEED_LIVENESS_TIMEOUT_SECONDS", 60),
        )


_config: JobFeedConfig | None = None


def get_jobfeed_config() -> JobFeedConfig:
    global _config
    if _config is None:
        _config = JobFeedConfig.from_settings()
    return _config


def refresh() -> JobFeedConfig:
    global _config
    _config = JobFeedConfig.from_settings()
    return _config


@receiver(setting_changed)
def _reset_on_setting_change(sender, setting, **kwargs):
    global _config
    if setting.startswith("JOBFEED_"):
        _config = None

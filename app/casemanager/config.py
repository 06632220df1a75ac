"""
Case-management connection settings.

CaseManagementConfig is an immutable snapshot built from Django settings
and passed explicitly into CaseManagementClient.
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver


@dataclass(frozen=True)
class CaseManagementConfig:
    """
    Attributes:
        base_url: API root, e.g. https://www.servemanager.com/api/v2
        api_key: API key sent as the Basic auth username
        enabled: Master switch for outbound calls
        connect_timeout: Seconds to establish a connection
        read_timeout: Seconds to wait for a response
    """

    base_url: str
    api_key: str
    enabled: bool = True
    connect_timeout: float = 5.0
    read_timeout: float = 15.0

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.base_url) and bool(self.api_key)

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_settings(cls) -> CaseManagementConfig:
        return cls(
            base_url=getattr(settings, "CASE_MANAGEMENT_BASE_URL", "").rstrip("/"),
            api_key=getattr(settings, "CASE_MANAGEMENT_API_KEY", ""),
            enabled=getattr(settings, "CASE_MANAGEMENT_ENABLED", True),
            connect_timeout=getattr(settings, "CASE_MANAGEMENT_CONNECT_TIMEOUT", 5.0),
            read_timeout=getattr(settings, "CASE_MANAGEMENT_READ_TIMEOUT", 15.0),
        )


_config: CaseManagementConfig | None = None


def get_case_management_config() -> CaseManagementConfig:
    """Return the cached config, building it on first use."""
    global _config
    if _config is None:
        _config = CaseManagementConfig.from_settings()
    return _config


def refresh() -> CaseManagementConfig:
    global _config
    _config = CaseManagementConfig.from_settings()
    return _config


@receiver(setting_changed)
def _reset_on_setting_change(sender, setting, **kwargs):
    global _config
    if setting.startswith("CASE_MANAGEMENT_"):
        _config = None

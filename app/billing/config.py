"""
Payment gateway configuration.

GatewayConfig is an immutable snapshot of the Stripe settings. It is built
from Django settings once and passed explicitly to StripeAdapter.configure()
and to the billing services, so tests can hand in their own instance.

Usage:
    from billing.config import get_gateway_config

    config = get_gateway_config()
    StripeAdapter.configure(config)
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver


@dataclass(frozen=True)
class GatewayConfig:
    """
    Stripe and billing policy settings.

    Attributes:
        secret_key: Stripe API secret key (sk_...)
        publishable_key: Key handed to the client-side card form (pk_...)
        webhook_secret: Webhook signing secret (whsec_...)
        timeout_seconds: Per-request timeout for Stripe API calls
        max_network_retries: Network retries performed by the Stripe SDK
        currency: Default ISO 4217 currency for charges
        max_automatic_attempts: Cap on automatic charge attempts per job
        stale_charge_minutes: Age after which an in-flight attempt is re-driven
    """

    secret_key: str
    publishable_key: str
    webhook_secret: str
    timeout_seconds: int = 10
    max_network_retries: int = 3
    currency: str = "usd"
    max_automatic_attempts: int = 3
    stale_charge_minutes: int = 30

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_automatic_attempts < 1:
            raise ValueError("max_automatic_attempts must be at least 1")

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    @classmethod
    def from_settings(cls) -> GatewayConfig:
        """Build a config from the current Django settings."""
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            publishable_key=getattr(settings, "STRIPE_PUBLISHABLE_KEY", ""),
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout_seconds=getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10),
            max_network_retries=getattr(settings, "STRIPE_MAX_RETRIES", 3),
            currency=getattr(settings, "BILLING_CURRENCY", "usd").lower(),
            max_automatic_attempts=getattr(settings, "BILLING_MAX_AUTOMATIC_ATTEMPTS", 3),
            stale_charge_minutes=getattr(settings, "BILLING_STALE_CHARGE_MINUTES", 30),
        )


_config: GatewayConfig | None = None


def get_gateway_config() -> GatewayConfig:
    """Return the cached GatewayConfig, building it on first use."""
    global _config
    if _config is None:
        _config = GatewayConfig.from_settings()
    return _config


def refresh() -> GatewayConfig:
    """Rebuild the cached GatewayConfig from settings and reconfigure Stripe."""
    from billing.adapters.stripe_adapter import StripeAdapter

    global _config
    _config = GatewayConfig.from_settings()
    StripeAdapter.configure(_config)
    return _config


@receiver(setting_changed)
def _reset_on_setting_change(sender, setting, **kwargs):
    global _config
    if setting.startswith(("STRIPE_", "BILLING_")):
        from billing.adapters.stripe_adapter import StripeAdapter

        _config = None
        StripeAdapter._configured_with = None

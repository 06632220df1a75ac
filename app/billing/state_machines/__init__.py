"""
State enums for billing models.

Re-exports every enum from states.py so models and services can import
from billing.state_machines directly.
"""

from billing.state_machines.states import (
    BillingState,
    ChargeAttemptStatus,
    DriftKind,
    DriftResolution,
    RefundStatus,
    UnmetCondition,
    WebhookEventStatus,
)

__all__ = [
    "BillingState",
    "ChargeAttemptStatus",
    "DriftKind",
    "DriftResolution",
    "RefundStatus",
    "UnmetCondition",
    "WebhookEventStatus",
]

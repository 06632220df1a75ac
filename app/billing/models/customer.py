"""
BillingCustomer model: local dedup index for Stripe customers.

Stripe owns the customer record. This table only guarantees that one
normalized email maps to exactly one Stripe customer, so repeated and
concurrent setup flows for the same law firm converge on one customer.

Usage:
    from billing.models import BillingCustomer

    customer = BillingCustomer.objects.for_email("Ops@Firm.test")
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


def normalize_email(email: str) -> str:
    """Canonical form used for customer deduplication."""
    return (email or "").strip().lower()


class BillingCustomerQuerySet(models.QuerySet):
    def for_email(self, email: str) -> BillingCustomer | None:
        return self.filter(email=normalize_email(email)).first()


class BillingCustomer(UUIDPrimaryKeyMixin, BaseModel):
    """
    A paying client of the process-service portal.

    Fields:
        email: Lower-cased email, unique (case-insensitive dedup key)
        display_name: Name shown on Stripe receipts
        stripe_customer_id: Stripe Customer ID (cus_xxx)
    """

    email = models.EmailField(
        unique=True,
        help_text="Lower-cased customer email (dedup key)",
    )

    display_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Customer name shown on Stripe receipts",
    )

    stripe_customer_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )

    objects = BillingCustomerQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Billing Customer"
        verbose_name_plural = "Billing Customers"

    def __str__(self) -> str:
        return f"BillingCustomer({self.email}, {self.stripe_customer_id})"

    def save(self, *args, **kwargs):
        self.email = normalize_email(self.email)
        super().save(*args, **kwargs)

"""
Reusable model mixins.

Mixins:
    UUIDPrimaryKeyMixin: UUID primary key instead of auto-increment
    VersionedMixin: Optimistic-locking version counter bumped on every save

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

    class BillingJob(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
        amount_cents = models.PositiveIntegerField()

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    IDs are safe to hand to the payment gateway as correlation metadata
    and to expose in URLs without revealing record counts.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic-locking version counter.

    Every save() of an existing row increments ``version`` in the database
    with an F() expression, then reloads it. Compare-and-set updates can
    filter on ``version=expected`` to detect concurrent modification.

    Fields:
        version: Monotonic counter, starts at 1

    Example:
        updated = BillingJob.objects.filter(
            pk=job.pk, version=job.version
        ).update(version=F("version") + 1, ...)
        if not updated:
            raise StaleRecordError(...)
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Optimistic locking version, incremented on every save",
    )

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        """Save and bump the version for existing rows."""
        is_update = not self._state.adding
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

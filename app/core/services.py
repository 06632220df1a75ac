"""
Service-layer building blocks.

ServiceResult carries expected outcomes (a stale webhook, an invoice
that is already paid, a job with nothing to do). Failures the caller has
to surface, such as declines or upstream outages, are raised as
BaseApplicationError subclasses instead.

Usage:
    from core.services import BaseService, ServiceResult

    class InvoiceSync(BaseService):
        def mark_paid(self, job) -> ServiceResult[dict]:
            if job.invoice_marked_paid_at:
                return ServiceResult.success({"status": "already_synced"})
            ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call.

    Attributes:
        success: Whether the call achieved its goal
        data: Payload on success
        error: Human-readable reason on failure
        error_code: Machine-readable reason on failure
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def from_exception(cls, exc: Exception) -> ServiceResult[T]:
        """Failure carrying the exception's message and error_code (or class name)."""
        return cls(
            success=False,
            error=getattr(exc, "message", None) or str(exc),
            error_code=getattr(exc, "error_code", None) or exc.__class__.__name__.upper(),
        )

    def to_response(self) -> dict[str, Any]:
        """Plain dict for API payloads and Celery task results."""
        if self.success:
            return {"success": True, "data": self.data}
        response: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            response["error_code"] = self.error_code
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for billing and job-feed services.

    Collaborators (the Stripe adapter class, configs, HTTP clients) are
    injected through __init__ so tests can swap them for mocks.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named <module>.<ClassName>, under the app's configured logger."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

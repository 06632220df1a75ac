"""
Application error hierarchy.

Domain errors from billing, casemanager and jobfeed derive from
BaseApplicationError so views and tasks can render and log them the same
way: ``to_dict()`` is the API error body, ``error_code`` is stable for
clients and ``details`` holds identifiers (job ids, gateway codes).

    BaseApplicationError
    ├── ValidationError       rule violations that need DB or gateway state
    ├── NotFoundError         a job, attempt or upstream record is missing
    ├── ConflictError         stale versions, illegal transitions, held locks
    └── ExternalServiceError  Stripe or case-management failures

Usage:
    raise NotFoundError(
        f"BillingJob {job_id} not found",
        error_code="BILLING_JOB_NOT_FOUND",
        details={"job_id": str(job_id)},
    )
"""

from __future__ import annotations

from typing import Any


class BaseApplicationError(Exception):
    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        API error body, e.g.::

            {
                "error": "No stored payment method for this job",
                "error_code": "NO_PAYMENT_METHOD",
                "details": {"job_id": "9f0c..."}
            }
        """
        body: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(message={self.message!r}, "
            f"error_code={self.error_code!r}, details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    A request that is well-formed but not allowed, e.g. a refund larger
    than what remains on the charge. Request shape is left to serializers.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """Rendered as 409."""

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    The gateway or the case-management API failed without giving a
    business answer (timeout, connection error, 5xx).
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"

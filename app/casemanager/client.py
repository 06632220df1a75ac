"""
HTTP client for the case-management API.

All calls use HTTP Basic auth with the API key as username and an empty
password, JSON bodies, and a bounded (connect, read) timeout.

Usage:
    from casemanager.client import CaseManagementClient

    client = CaseManagementClient.from_settings()
    job = client.fetch_job("48213")             # NormalizedJob
    client.mark_invoice_paid("9921", 8500, date.today())
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import requests

from casemanager.config import CaseManagementConfig, get_case_management_config
from casemanager.exceptions import (
    CaseManagementError,
    CaseManagementNotConfigured,
    CaseManagementNotFound,
    CaseManagementUnavailable,
)
from casemanager.normalizer import NormalizedJob, normalize_job

if TYPE_CHECKING:
    from datetime import date

logger = logging.getLogger(__name__)


class CaseManagementClient:
    """
    Thin wrapper over the case-management JSON:API.

    Args:
        config: Connection settings
        session: Optional requests.Session (injected in tests)
    """

    def __init__(
        self,
        config: CaseManagementConfig,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls) -> CaseManagementClient:
        return cls(get_case_management_config())

    # =========================================================================
    # Transport
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.config.is_configured:
            raise CaseManagementNotConfigured(
                "Case-management API credentials are not configured"
            )

        url = f"{self.config.base_url}{path}"
        log_context = {"method": method, "path": path}
        start_time = time.time()

        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                auth=(self.config.api_key, ""),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            logger.warning(
                "Case-management request timed out",
                extra={**log_context, "duration_ms": (time.time() - start_time) * 1000},
            )
            raise CaseManagementUnavailable(
                f"Case-management request timed out: {method} {path}",
                details={"path": path},
            ) from e
        except requests.RequestException as e:
            logger.error(
                "Case-management request failed",
                extra=log_context,
                exc_info=True,
            )
            raise CaseManagementUnavailable(
                f"Could not reach case-management API: {e}",
                details={"path": path},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        log_context = {**log_context, "status_code": response.status_code, "duration_ms": duration_ms}

        if response.status_code == 404:
            logger.info("Case-management resource not found", extra=log_context)
            raise CaseManagementNotFound(
                f"Not found: {path}",
                details={"path": path},
            )
        if response.status_code >= 500:
            logger.warning("Case-management server error", extra=log_context)
            raise CaseManagementUnavailable(
                f"Case-management API error {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            logger.error(
                "Case-management request rejected",
                extra={**log_context, "body": response.text[:500]},
            )
            raise CaseManagementError(
                f"Case-management API rejected {method} {path} ({response.status_code})",
                details={"path": path, "status_code": response.status_code},
            )

        logger.debug("Case-management request completed", extra=log_context)
        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # Jobs
    # =========================================================================

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Fetch the raw job payload."""
        return self._request("GET", f"/jobs/{job_id}")

    def fetch_job(self, job_id: str) -> NormalizedJob:
        """Fetch a job and normalize it."""
        return normalize_job(self.get_job(job_id))

    # =========================================================================
    # Invoices
    # =========================================================================

    def mark_invoice_paid(
        self,
        invoice_id: str,
        amount_cents: int,
        paid_on: date,
    ) -> dict[str, Any]:
        """
        Record a payment on an invoice and set its status to paid.

        Two calls: a JSON:API payment record POSTed to
        /invoices/<id>/payments, then a PATCH of the invoice status.
        Retrying after a failed PATCH posts the payment record again; the
        caller guards against that with invoice_marked_paid_at.
        """
        payment = self._request(
            "POST",
            f"/invoices/{invoice_id}/payments",
            {
                "data": {
                    "type": "payments",
                    "attributes": {
                        "amount": round(amount_cents / 100, 2),
                        "applied_on": paid_on.isoformat(),
                        "description": "Payment processed via Stripe integration",
                    },
                    "relationships": {
                        "invoice": {"data": {"type": "invoices", "id": str(invoice_id)}},
                    },
                }
            },
        )

        invoice = self._request(
            "PATCH",
            f"/invoices/{invoice_id}",
            {
                "data": {
                    "type": "invoices",
                    "id": str(invoice_id),
                    "attributes": {"status": "paid"},
                }
            },
        )

        logger.info(
            "Invoice marked paid",
            extra={"invoice_id": invoice_id, "amount_cents": amount_cents},
        )
        return {"payment": payment, "invoice": invoice}

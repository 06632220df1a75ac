"""
Exceptions raised by the case-management client.

Exception Hierarchy:
    CaseManagementError (ExternalServiceError)
    ├── CaseManagementUnavailable - Timeouts, connection errors, 5xx
    ├── CaseManagementNotFound - 404 for the requested resource
    └── CaseManagementNotConfigured - Missing base URL or API key
"""

from core.exceptions import ExternalServiceError


class CaseManagementError(ExternalServiceError):
    """Base exception for case-management API failures."""

    default_error_code: str = "CASE_MANAGEMENT_ERROR"


class CaseManagementUnavailable(CaseManagementError):
    """The case-management API timed out, was unreachable, or answered 5xx."""

    default_error_code: str = "CASE_MANAGEMENT_UNAVAILABLE"


class CaseManagementNotFound(CaseManagementError):
    default_error_code: str = "CASE_MANAGEMENT_NOT_FOUND"


class CaseManagementNotConfigured(CaseManagementError):
    """CASE_MANAGEMENT_BASE_URL or CASE_MANAGEMENT_API_KEY is not set."""

    default_error_code: str = "CASE_MANAGEMENT_NOT_CONFIGURED"

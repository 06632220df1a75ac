"""
Shared infrastructure for the billing, casemanager and jobfeed apps.

Holds no billing or job-feed logic. Models and mixins live in
core.models and core.model_mixins and are not re-exported here, so that
importing core never touches the app registry.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from .services import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExternalServiceError",
]

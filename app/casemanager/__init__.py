"""
Case-management system integration.

The external case-management system (a ServeManager-style JSON:API) owns
jobs, service attempts, documents, affidavits and invoices. This app only
reads jobs and marks invoices paid; it has no models.

Modules:
    - config: CaseManagementConfig (frozen, built from settings)
    - client: CaseManagementClient (requests, Basic auth, bounded timeouts)
    - normalizer: Versioned mapping of upstream payloads to NormalizedJob
    - exceptions: CaseManagementError hierarchy
"""

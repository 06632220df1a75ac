"""
Versioned normalizer for case-management job payloads.

The upstream API is inconsistent about field names: the same job may
report its status as service_status, job_status or status depending on
endpoint and account age. Everything downstream (change detection,
billing) works on the canonical NormalizedJob produced here.

Field fallbacks (first non-empty wins):
    id:              id | uuid | job_id
    job_number:      servemanager_job_number | job_number | generated_job_id | reference
    status:          service_status | job_status | status
    attempts:        attempts | service_attempts
    documents:       documents_to_be_served | documents | files
    amount:          invoice.total | amount | price | cost | fee | total
    affidavit:       affidavit.signed | affidavit_signed | proof_of_service
    invoice id:      invoice.id | invoice_id
    updated_at:      updated_at | date_updated | modified
    client email:    client_contact.email | client_email | client.email

JSON:API envelopes ({"data": {"id", "type", "attributes"}}) are unwrapped
before mapping.

NORMALIZER_VERSION is stored with every JobSnapshot. A snapshot written by
a different version is not diffed; it is replaced as a new baseline.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

NORMALIZER_VERSION = 2


@dataclass(frozen=True)
class NormalizedAttempt:
    id: str
    attempted_at: str | None = None
    result: str | None = None
    description: str | None = None
    server_name: str | None = None


@dataclass(frozen=True)
class NormalizedDocument:
    id: str
    title: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class NormalizedJob:
    """
    Canonical job as seen by change detection and billing.

    attempts and documents are tuples so the whole value is hashable
    and comparable.
    """

    id: str
    job_number: str | None = None
    status: str | None = None
    amount_cents: int = 0
    affidavit_signed: bool = False
    invoice_id: str | None = None
    client_email: str | None = None
    client_name: str | None = None
    recipient_name: str | None = None
    due_date: str | None = None
    updated_at: str | None = None
    attempts: tuple[NormalizedAttempt, ...] = field(default_factory=tuple)
    documents: tuple[NormalizedDocument, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["attempts"] = [asdict(a) for a in self.attempts]
        data["documents"] = [asdict(d) for d in self.documents]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NormalizedJob:
        values = dict(data)
        values["attempts"] = tuple(
            NormalizedAttempt(**a) for a in values.get("attempts", [])
        )
        values["documents"] = tuple(
            NormalizedDocument(**d) for d in values.get("documents", [])
        )
        return cls(**values)


# =============================================================================
# Helpers
# =============================================================================


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, dict):
        value = value.get("name") or value.get("title") or value.get("value")
        if value is None:
            return None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


def _nested(raw: dict[str, Any], outer: str, inner: str) -> Any:
    value = raw.get(outer)
    if isinstance(value, dict):
        return value.get(inner)
    return None


def _to_cents(value: Any) -> int:
    if value in (None, ""):
        return 0
    try:
        amount = Decimal(str(value).replace("$", "").replace(",", ""))
    except InvalidOperation:
        return 0
    return int((amount * 100).quantize(Decimal("1")))


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "signed")
    return bool(value)


def _person_name(value: Any) -> str | None:
    if isinstance(value, dict) and (value.get("first_name") or value.get("last_name")):
        return f"{value.get('first_name') or ''} {value.get('last_name') or ''}".strip()
    return _text(value)


def unwrap_envelope(payload: Any) -> dict[str, Any]:
    """Flatten a JSON:API {"data": {...}} envelope into a plain dict."""
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data")
    if isinstance(data, dict) and ("attributes" in data or "type" in data):
        flattened = dict(data.get("attributes") or {})
        if data.get("id") is not None:
            flattened.setdefault("id", data["id"])
        return flattened
    if isinstance(data, dict):
        return data
    return payload


# =============================================================================
# Field Mappers
# =============================================================================


def _affidavit_signed(raw: dict[str, Any]) -> bool:
    affidavit = raw.get("affidavit")
    if isinstance(affidavit, dict):
        if "signed" in affidavit:
            return _truthy(affidavit["signed"])
        if affidavit.get("status"):
            return str(affidavit["status"]).lower() == "signed"
        if affidavit.get("signed_at"):
            return True

    if "affidavit_signed" in raw:
        return _truthy(raw["affidavit_signed"])

    proof = raw.get("proof_of_service")
    if isinstance(proof, dict):
        if "signed" in proof:
            return _truthy(proof["signed"])
        return bool(proof.get("signed_at")) or str(proof.get("status", "")).lower() == "signed"
    return _truthy(proof) if proof is not None else False


def _amount_cents(raw: dict[str, Any]) -> int:
    invoice_total = _nested(raw, "invoice", "total")
    if invoice_total not in (None, ""):
        return _to_cents(invoice_total)
    return _to_cents(_first(raw, "amount", "price", "cost", "fee", "total"))


def _attempts(raw: dict[str, Any]) -> tuple[NormalizedAttempt, ...]:
    items = _first(raw, "attempts", "service_attempts") or []
    attempts = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        attempt_id = _text(_first(item, "id", "uuid"))
        attempted_at = _text(_first(item, "attempt_date", "attempted_at", "created_at", "date"))
        attempts.append(
            NormalizedAttempt(
                id=attempt_id or f"{attempted_at or 'attempt'}#{index}",
                attempted_at=attempted_at,
                result=_text(_first(item, "result", "status", "service_status")),
                description=_text(_first(item, "description", "notes", "server_notes")),
                server_name=_person_name(
                    _first(item, "employee_process_server", "server_name", "server")
                ),
            )
        )
    return tuple(attempts)


def _documents(raw: dict[str, Any]) -> tuple[NormalizedDocument, ...]:
    items = _first(raw, "documents_to_be_served", "documents", "files") or []
    documents = []
    for index, item in enumerate(items):
        if isinstance(item, dict):
            title = _text(_first(item, "title", "name", "file_name"))
            documents.append(
                NormalizedDocument(
                    id=_text(_first(item, "id", "uuid")) or f"{title or 'document'}#{index}",
                    title=title,
                    url=_text(_first(item, "url", "file_url", "download_url")),
                )
            )
        elif isinstance(item, str):
            documents.append(NormalizedDocument(id=item, title=item))
    return tuple(documents)


# =============================================================================
# Public API
# =============================================================================


def normalize_job(payload: dict[str, Any]) -> NormalizedJob:
    """
    Map an upstream job payload to a NormalizedJob.

    Args:
        payload: Raw job dict or JSON:API envelope

    Raises:
        ValueError: The payload carries no usable job id
    """
    raw = unwrap_envelope(payload)

    job_id = _text(_first(raw, "id", "uuid", "job_id"))
    if not job_id:
        raise ValueError("Job payload has no id, uuid or job_id")

    client_email = _nested(raw, "client_contact", "email") or _first(raw, "client_email")
    if not client_email:
        client_email = _nested(raw, "client", "email")

    client_name = _person_name(raw.get("client_contact")) or _text(
        _first(raw, "client_name")
    )
    if not client_name:
        client_name = _text(_nested(raw, "client_company", "name")) or _text(
            _nested(raw, "client", "name")
        )

    invoice_id = _nested(raw, "invoice", "id") or raw.get("invoice_id")

    return NormalizedJob(
        id=job_id,
        job_number=_text(
            _first(raw, "servemanager_job_number", "job_number", "generated_job_id", "reference")
        ),
        status=_text(_first(raw, "service_status", "job_status", "status")),
        amount_cents=_amount_cents(raw),
        affidavit_signed=_affidavit_signed(raw),
        invoice_id=_text(invoice_id),
        client_email=_text(client_email),
        client_name=client_name,
        recipient_name=_text(_nested(raw, "recipient", "name"))
        or _text(_first(raw, "recipient_name", "defendant_name")),
        due_date=_text(_first(raw, "due_date", "date_due", "deadline")),
        updated_at=_text(_first(raw, "updated_at", "date_updated", "modified")),
        attempts=_attempts(raw),
        documents=_documents(raw),
    )

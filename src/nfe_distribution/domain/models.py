"""
Domain models — immutable data structures for identities, queries and results.

Pure value objects with no behavior beyond self-validation and derived
properties. Everything is a frozen dataclass: an Identity is decoded once
per call, a DistributionQuery and DistributionResult live for one call.

DocumentRecord is a closed union of three variants, one per embedded
document schema, so callers can only read fields that exist for the
variant they received:

    match record:
        case Summary(access_key=key, total_value=value): ...
        case FullDocument(raw_xml=xml): ...
        case EventSummary(event_type=kind): ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from nfe_distribution.domain.errors import InvalidQueryError
from nfe_distribution.domain.jurisdiction import resolve_state_code

DOCUMENTS_FOUND = "138"
MAX_NSU = 10**15 - 1

_NON_DIGITS = re.compile(r"\D")


# ─────────────────────── Identity ───────────────────────


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    """
    The holder's X.509 certificate plus the metadata read from it.

    `der` is embedded (base64) in the signature's KeyInfo; `pem` is handed
    to the TLS layer as the client certificate.
    """

    der: bytes = field(repr=False)
    pem: str = field(repr=False)
    subject: dict[str, str]
    serial_number: int
    not_before: datetime
    not_after: datetime
    tax_id: str | None = None

    @property
    def serial_hex(self) -> str:
        return format(self.serial_number, "x")

    @property
    def holder_name(self) -> str:
        return self.subject.get("CN") or self.subject.get("O") or "N/A"

    def is_expired(self, at: datetime) -> bool:
        return self.not_after <= at


@dataclass(frozen=True, slots=True)
class Identity:
    """Private key and certificate decoded from one PKCS#12 container."""

    private_key: Any = field(repr=False)
    certificate: CertificateInfo


@dataclass(frozen=True, slots=True)
class CertificateStatus:
    """Certificate metadata reported by the validation endpoint."""

    holder_name: str
    tax_id: str | None
    not_before: datetime
    not_after: datetime
    expired: bool
    serial_number: str


# ─────────────────────── Query ───────────────────────


@dataclass(frozen=True, slots=True)
class DistributionQuery:
    """
    Parameters of one distribution request.

    Either `last_nsu` (batch by cursor) or `access_key` (one document) is
    set, never both. Use `create` to normalize raw caller input.
    """

    tax_id: str
    jurisdiction: str
    last_nsu: int | None = None
    access_key: str | None = None

    def __post_init__(self) -> None:
        if len(self.tax_id) not in (11, 14) or not self.tax_id.isdigit():
            raise InvalidQueryError(
                f"Tax ID must have 11 (CPF) or 14 (CNPJ) digits, got {self.tax_id!r}"
            )
        if len(self.jurisdiction) != 2 or not self.jurisdiction.isdigit():
            raise InvalidQueryError(f"Jurisdiction must be a 2-digit IBGE code, got {self.jurisdiction!r}")
        if self.last_nsu is not None and self.access_key is not None:
            raise InvalidQueryError("last_nsu and access_key are mutually exclusive")
        if self.last_nsu is None and self.access_key is None:
            raise InvalidQueryError("Either last_nsu or access_key is required")
        if self.last_nsu is not None and not 0 <= self.last_nsu <= MAX_NSU:
            raise InvalidQueryError(f"last_nsu must be between 0 and {MAX_NSU}, got {self.last_nsu}")
        if self.access_key is not None and (
            len(self.access_key) != 44 or not self.access_key.isdigit()
        ):
            raise InvalidQueryError(f"Access key must have 44 digits, got {self.access_key!r}")

    @property
    def is_by_key(self) -> bool:
        return self.access_key is not None

    @staticmethod
    def create(
        tax_id: str,
        jurisdiction: str,
        last_nsu: int | str | None = 0,
        access_key: str | None = None,
    ) -> DistributionQuery:
        """
        Build a query from caller input.

        Strips punctuation from the tax ID and key, resolves state
        abbreviations to IBGE codes, and accepts the cursor as text
        ("000000000000123") or int. A document key takes precedence over
        the default cursor.
        """
        try:
            state = resolve_state_code(jurisdiction)
        except ValueError as e:
            raise InvalidQueryError(str(e)) from e

        key = _NON_DIGITS.sub("", access_key) if access_key else None
        cursor: int | None = None
        if key is None:
            try:
                cursor = int(str(last_nsu).strip() or "0") if last_nsu is not None else 0
            except ValueError as e:
                raise InvalidQueryError(f"last_nsu must be numeric, got {last_nsu!r}") from e

        return DistributionQuery(
            tax_id=_NON_DIGITS.sub("", tax_id),
            jurisdiction=state,
            last_nsu=cursor,
            access_key=key,
        )


# ─────────────────────── Transport ───────────────────────


@dataclass(frozen=True, slots=True)
class RawResponse:
    """HTTP status and body of one round-trip."""

    status_code: int
    content: bytes = field(repr=False)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


# ─────────────────────── Documents ───────────────────────


@dataclass(frozen=True, slots=True)
class Summary:
    """resNFe — summary of an invoice issued against the requester."""

    nsu: int
    schema: str
    access_key: str
    emitter_tax_id: str
    emitter_name: str
    emitter_registration: str
    issued_at: datetime | None
    operation_type: str
    total_value: float
    digest_value: str
    status: str
    raw_xml: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class FullDocument:
    """procNFe / nfeProc — the complete authorized invoice."""

    nsu: int
    schema: str
    access_key: str
    raw_xml: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class EventSummary:
    """resEvento — summary of an event (cancellation, acknowledgement, ...)."""

    nsu: int
    schema: str
    access_key: str
    event_type: str
    event_description: str
    raw_xml: str = field(repr=False)


type DocumentRecord = Summary | FullDocument | EventSummary


@dataclass(frozen=True, slots=True)
class DistributionResult:
    """
    Decoded outcome of one distribution call.

    `documents` keeps the order the batch was received in, which is
    ascending NSU; callers advance their cursor to `last_nsu` only after
    consuming them.
    """

    status_code: str
    status_reason: str
    last_nsu: int = 0
    max_nsu: int = 0
    documents: tuple[DocumentRecord, ...] = ()
    environment: str | None = None
    application_version: str | None = None
    responded_at: str | None = None

    @property
    def has_more(self) -> bool:
        return self.last_nsu < self.max_nsu

    @property
    def documents_found(self) -> bool:
        return self.status_code == DOCUMENTS_FOUND

    @property
    def summaries(self) -> list[Summary]:
        return [d for d in self.documents if isinstance(d, Summary)]

    @property
    def full_documents(self) -> list[FullDocument]:
        return [d for d in self.documents if isinstance(d, FullDocument)]

    @property
    def events(self) -> list[EventSummary]:
        return [d for d in self.documents if isinstance(d, EventSummary)]


@dataclass(frozen=True, slots=True)
class PagedBatch:
    """Everything collected by walking the cursor across several pages."""

    documents: tuple[DocumentRecord, ...]
    last_nsu: int
    max_nsu: int
    status_code: str
    status_reason: str
    pages: int

    @property
    def has_more(self) -> bool:
        return self.last_nsu < self.max_nsu

"""
Pipeline — the ROP orchestration of one distribution call.

Domain layer — PURE BUSINESS LOGIC. All I/O is injected via ports
(Protocol interfaces), and the clock is injected so expiry is testable.

The stages are connected via flat_map, forming a railway:

  reader.read(container, password)
    → ensure the certificate is still valid (before any network I/O)
      → composer.build_query(query)
        → signer.sign_enveloped(fragment, identity)
          → composer.wrap_envelope(signed)
            → transport.send(envelope, identity)
              → decoder.decode(raw.content)

Each stage returns Result[T]. Failures short-circuit automatically
through the railway — no try/except needed here.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from nfe_distribution.domain.errors import (
    DecodeError,
    ExpiredCertificateError,
    TransportError,
)
from nfe_distribution.domain.models import (
    CertificateStatus,
    DistributionQuery,
    DistributionResult,
    Identity,
    RawResponse,
)
from nfe_distribution.domain.ports import (
    CertificateReader,
    DistributionTransport,
    RequestComposer,
    ResponseDecoder,
    XmlSigner,
)
from nfe_distribution.result import ErrorCode, Result

log = structlog.get_logger()

type Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ensure_valid(identity: Identity, now: datetime) -> Result[Identity]:
    """Reject an identity whose certificate is past its notAfter."""
    certificate = identity.certificate
    if certificate.is_expired(now):
        message = f"Certificate expired at {certificate.not_after.isoformat()}"
        log.warning(
            "pipeline.certificate_expired",
            holder=certificate.holder_name,
            not_after=certificate.not_after.isoformat(),
        )
        return Result.failure(
            ErrorCode.EXPIRED_CERTIFICATE, message, ExpiredCertificateError(message)
        )
    return Result.success(identity)


def _build_query(
    tax_id: str,
    jurisdiction: str,
    last_nsu: int | str | None,
    access_key: str | None,
) -> Result[DistributionQuery]:
    return Result.from_computation(
        lambda: DistributionQuery.create(tax_id, jurisdiction, last_nsu, access_key),
        ErrorCode.INVALID_QUERY,
        "Invalid distribution query",
    )


def _decode_response(raw: RawResponse, decoder: ResponseDecoder) -> Result[DistributionResult]:
    """
    Decode the body; a non-2xx body that is not a readable response is a
    transport failure, since the service never answered in-band.
    """
    decoded = decoder.decode(raw.content)
    if raw.ok or decoded.is_success():
        return decoded

    cause = decoded.error().exception or DecodeError(decoded.error().message)
    error = TransportError(f"HTTP {raw.status_code} with an unreadable body")
    error.__cause__ = cause
    return Result.failure(ErrorCode.TRANSPORT_ERROR, str(error), error)


def fetch_documents(
    container: bytes,
    password: str,
    tax_id: str,
    jurisdiction: str,
    last_nsu: int | str | None = 0,
    access_key: str | None = None,
    *,
    reader: CertificateReader,
    signer: XmlSigner,
    composer: RequestComposer,
    transport: DistributionTransport,
    decoder: ResponseDecoder,
    clock: Clock = _utc_now,
) -> Result[DistributionResult]:
    """
    Execute one distribution request end to end.

    Flow:
      1. Read the PKCS#12 identity and reject it if expired
      2. Validate the query (tax ID, state, cursor or document key)
      3. Compose and sign the distDFeInt request
      4. Wrap it in SOAP and send it over mutual TLS
      5. Decode the response and its docZip batch

    Returns Result[DistributionResult] on success, or the failure of the
    first stage that failed.
    """

    def exchange(identity: Identity) -> Result[DistributionResult]:
        return (
            _build_query(tax_id, jurisdiction, last_nsu, access_key)
            .peek(
                lambda query: log.info(
                    "pipeline.query",
                    tax_id=query.tax_id,
                    state=query.jurisdiction,
                    last_nsu=query.last_nsu,
                    by_key=query.is_by_key,
                )
            )
            .flat_map(composer.build_query)
            .flat_map(lambda fragment: signer.sign_enveloped(fragment, identity))
            .map(composer.wrap_envelope)
            .flat_map(lambda envelope: transport.send(envelope, identity))
            .flat_map(lambda raw: _decode_response(raw, decoder))
        )

    result = (
        reader.read(container, password)
        .flat_map(lambda identity: _ensure_valid(identity, clock()))
        .flat_map(exchange)
    )
    return result.peek_failure(
        lambda err: log.error("pipeline.failed", code=err.code.value, error=err.message)
    )


def validate_certificate(
    container: bytes,
    password: str,
    *,
    reader: CertificateReader,
    clock: Clock = _utc_now,
) -> Result[CertificateStatus]:
    """
    Read a container and report its metadata, including whether it has expired.

    An expired certificate is a successful validation with `expired=True`;
    only unreadable containers fail.
    """
    now = clock()
    return reader.read(container, password).map(
        lambda identity: CertificateStatus(
            holder_name=identity.certificate.holder_name,
            tax_id=identity.certificate.tax_id,
            not_before=identity.certificate.not_before,
            not_after=identity.certificate.not_after,
            expired=identity.certificate.is_expired(now),
            serial_number=identity.certificate.serial_hex,
        )
    )

"""
FastAPI + Uvicorn ASGI application exposing the distribution client.

Endpoints:
  POST /manifest/consulta              — one distribution request
  POST /manifest/certificado/validar   — read a certificate and report its metadata
  GET  /manifest/status                — service descriptor
  GET  /health                         — liveness probe

Each request brings its own base64 PKCS#12 container and password; nothing
about an identity outlives the request. The pipeline is blocking (TLS,
signing, inflate), so it runs in a worker thread via asyncio.to_thread.

Entry point for production: uvicorn nfe_distribution.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from nfe_distribution import __version__
from nfe_distribution.adapters.pkcs12_reader import decode_container
from nfe_distribution.adapters.request_composer import format_nsu
from nfe_distribution.config import AppSettings
from nfe_distribution.domain.errors import CertificateError
from nfe_distribution.domain.models import (
    CertificateStatus,
    DistributionResult,
    EventSummary,
    FullDocument,
    Summary,
)
from nfe_distribution.main import FetchFn, ValidateFn, configure_structlog, create_pipeline
from nfe_distribution.result import ErrorCode, FailureDescription

SERVICE_NAME = "Manifestação do Destinatário"

# ─────────────────────── Global State ───────────────────────
# Set during app startup; tests replace them with fakes.

_fetch_fn: FetchFn | None = None
_validate_fn: ValidateFn | None = None
_error_message: str | None = None
log = structlog.get_logger()

_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.CERTIFICATE_ERROR: 422,
    ErrorCode.EXPIRED_CERTIFICATE: 409,
    ErrorCode.INVALID_QUERY: 400,
    ErrorCode.SIGNATURE_TARGET_NOT_FOUND: 422,
    ErrorCode.SIGNING_ERROR: 500,
    ErrorCode.TRANSPORT_ERROR: 502,
    ErrorCode.TIMEOUT_ERROR: 504,
    ErrorCode.DECODE_ERROR: 502,
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.UNKNOWN_ERROR: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load settings and wire the pipeline on startup."""
    global _fetch_fn, _validate_fn, _error_message

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    log.info(
        "asgi.startup_config",
        version=__version__,
        environment=settings.protocol.environment,
        endpoint=settings.endpoint_url,
        verify_peer=settings.transport.verify_peer,
    )

    _fetch_fn, _validate_fn = create_pipeline(settings)
    log.info("asgi.startup_complete")

    yield

    log.info("asgi.shutdown_complete")


# ─────────────────────── Request bodies ───────────────────────


class ConsultaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    certificate_base64: str = Field(alias="certificateBase64", min_length=1)
    certificate_password: str = Field(alias="certificatePassword", min_length=1)
    cnpj: str = Field(min_length=1)
    uf: str = Field(default="RJ")
    ult_nsu: str = Field(default="0", alias="ultNSU")
    ch_nfe: str | None = Field(default=None, alias="chNFe")


class ValidarRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    certificate_base64: str = Field(alias="certificateBase64", min_length=1)
    certificate_password: str = Field(alias="certificatePassword", min_length=1)


# ─────────────────────── Response mapping ───────────────────────


def _summary_json(summary: Summary) -> dict[str, Any]:
    return {
        "nsu": format_nsu(summary.nsu),
        "chaveNfe": summary.access_key,
        "cnpjEmitente": summary.emitter_tax_id,
        "nomeEmitente": summary.emitter_name,
        "ieEmitente": summary.emitter_registration,
        "dataEmissao": summary.issued_at.isoformat() if summary.issued_at else "",
        "valorNfe": summary.total_value,
        "sitNfe": summary.status,
        "tipoOperacao": summary.operation_type,
        "xmlResumo": summary.raw_xml,
    }


def _event_json(event: EventSummary) -> dict[str, Any]:
    return {
        "nsu": format_nsu(event.nsu),
        "tipo": "evento",
        "chNFe": event.access_key,
        "tipoEvento": event.event_type,
        "descEvento": event.event_description,
        "xmlResumo": event.raw_xml,
    }


def _full_document_json(document: FullDocument) -> dict[str, Any]:
    return {
        "nsu": format_nsu(document.nsu),
        "tipo": "completo",
        "chNFe": document.access_key,
        "xmlCompleto": document.raw_xml,
    }


def _result_json(result: DistributionResult) -> dict[str, Any]:
    return {
        "success": True,
        "cStat": result.status_code,
        "xMotivo": result.status_reason,
        "ultNSU": format_nsu(result.last_nsu),
        "maxNSU": format_nsu(result.max_nsu),
        "hasMore": result.has_more,
        "notas": [_summary_json(s) for s in result.summaries],
        "eventos": [_event_json(e) for e in result.events],
        "completos": [_full_document_json(d) for d in result.full_documents],
    }


def _status_json(status: CertificateStatus) -> dict[str, Any]:
    return {
        "success": True,
        "certificado": {
            "titular": status.holder_name,
            "cnpj": status.tax_id or "",
            "emissao": status.not_before.isoformat(),
            "vencimento": status.not_after.isoformat(),
            "expirado": status.expired,
            "serialNumber": status.serial_number,
        },
    }


def _failure_response(failure: FailureDescription) -> JSONResponse:
    return JSONResponse(
        status_code=_HTTP_STATUS.get(failure.code, 500),
        content={"success": False, "error": failure.message, "errorCode": failure.code.value},
    )


def _not_initialized() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "error": _error_message or "Pipeline not initialized",
            "errorCode": ErrorCode.CONFIGURATION_ERROR.value,
        },
    )


# ─────────────────────── FastAPI Application ───────────────────────

app = FastAPI(
    title="nfe-distribution",
    description="NF-e distribution (NFeDistribuicaoDFe) client as a web service",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or empty required fields are a 400, not FastAPI's default 422."""
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    log.warning("asgi.invalid_request", path=request.url.path, fields=fields)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"Missing or invalid fields: {', '.join(fields)}"},
    )


@app.post("/manifest/consulta")
async def consulta(body: ConsultaRequest) -> JSONResponse:
    """
    Run one distribution request for the given certificate and tax ID.

    Returns 200 with the decoded batch on success — including non-138
    statuses such as 137 (no documents), which are answers, not errors.
    Returns the error code's HTTP status otherwise.
    """
    if _fetch_fn is None:
        return _not_initialized()

    try:
        container = decode_container(body.certificate_base64)
    except CertificateError as e:
        return _failure_response(FailureDescription(e.code, str(e), e))

    log.info("consulta.start", tax_id=body.cnpj, state=body.uf, last_nsu=body.ult_nsu)

    result = await asyncio.to_thread(
        _fetch_fn,
        container,
        body.certificate_password,
        body.cnpj,
        body.uf,
        body.ult_nsu,
        body.ch_nfe or None,
    )

    if result.is_success():
        return JSONResponse(status_code=200, content=_result_json(result.value()))
    return _failure_response(result.error())


@app.post("/manifest/certificado/validar")
async def validar(body: ValidarRequest) -> JSONResponse:
    """Report holder, tax ID, validity window and expiry of a certificate."""
    if _validate_fn is None:
        return _not_initialized()

    try:
        container = decode_container(body.certificate_base64)
    except CertificateError as e:
        return _failure_response(FailureDescription(e.code, str(e), e))

    result = await asyncio.to_thread(_validate_fn, container, body.certificate_password)
    if result.is_success():
        return JSONResponse(status_code=200, content=_status_json(result.value()))
    return _failure_response(result.error())


@app.get("/manifest/status")
async def status() -> dict[str, Any]:
    return {"available": True, "service": SERVICE_NAME, "version": __version__}


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness probe — 503 if startup failed."""
    if _error_message:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": _error_message},
        )
    return JSONResponse(status_code=200, content={"status": "healthy"})


if __name__ == "__main__":
    # For local testing: python -m uvicorn nfe_distribution.asgi:app --reload
    import uvicorn

    uvicorn.run(
        "nfe_distribution.asgi:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )

"""
Application entry point — wires dependencies and starts the HTTP service.

Composition root: creates concrete adapters and binds them into the
pipeline functions the API calls.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog for structured logging
  2. Load and validate configuration from environment
  3. Create concrete adapter instances (reader, signer, composer, transport, decoder)
  4. Wire the pipeline (partial application with ports)
  5. Run the ASGI app under uvicorn
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from functools import partial

import structlog
import uvicorn

from nfe_distribution import __version__
from nfe_distribution.adapters.pkcs12_reader import Pkcs12CertificateReader
from nfe_distribution.adapters.request_composer import DistributionRequestComposer
from nfe_distribution.adapters.response_decoder import DistributionResponseDecoder
from nfe_distribution.adapters.soap_transport import SoapDistributionTransport
from nfe_distribution.adapters.xml_signer import EnvelopedSigner
from nfe_distribution.config import AppSettings
from nfe_distribution.domain.models import CertificateStatus, DistributionResult
from nfe_distribution.paging import DistributionPager
from nfe_distribution.pipeline import fetch_documents, validate_certificate
from nfe_distribution.result import Result


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Colored, human-readable console output; one event per line with
    key/value context. Events below `log_level` are dropped.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


type _Adapters = tuple[
    Pkcs12CertificateReader,
    EnvelopedSigner,
    DistributionRequestComposer,
    SoapDistributionTransport,
    DistributionResponseDecoder,
]

type FetchFn = Callable[..., Result[DistributionResult]]
type ValidateFn = Callable[[bytes, str], Result[CertificateStatus]]


def _create_adapters(settings: AppSettings) -> _Adapters:
    """
    Instantiate all concrete adapters from application settings.

    This is the ONLY place where concrete classes are created.
    """
    reader = Pkcs12CertificateReader()
    signer = EnvelopedSigner()
    composer = DistributionRequestComposer(
        environment=settings.protocol.environment,
        version=settings.protocol.version,
    )
    transport = SoapDistributionTransport(
        url=settings.endpoint_url,
        soap_action=settings.endpoint.soap_action,
        timeout=settings.transport.timeout_seconds,
        max_response_bytes=settings.transport.max_response_bytes,
        verify_peer=settings.transport.verify_peer,
        ca_bundle=settings.transport.ca_bundle,
    )
    decoder = DistributionResponseDecoder(
        max_document_bytes=settings.protocol.max_document_bytes,
    )
    return reader, signer, composer, transport, decoder


def create_pipeline(settings: AppSettings) -> tuple[FetchFn, ValidateFn]:
    """Bind the adapters into the two operations the API exposes."""
    reader, signer, composer, transport, decoder = _create_adapters(settings)
    fetch_fn = partial(
        fetch_documents,
        reader=reader,
        signer=signer,
        composer=composer,
        transport=transport,
        decoder=decoder,
    )
    validate_fn = partial(validate_certificate, reader=reader)
    return fetch_fn, validate_fn


def create_pager(
    settings: AppSettings,
    fetch_fn: FetchFn,
    container: bytes,
    password: str,
    tax_id: str,
    jurisdiction: str,
) -> DistributionPager:
    """A pager over one identity and tax ID, limits taken from settings.paging."""
    return DistributionPager(
        fetch_page=lambda nsu: fetch_fn(container, password, tax_id, jurisdiction, nsu),
        max_pages=settings.paging.max_pages,
        attempts=settings.paging.retry_attempts,
    )


def main() -> None:
    """Load settings and serve the API."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()

    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        environment=settings.protocol.environment,
        endpoint=settings.endpoint_url,
        host=settings.server.host,
        port=settings.server.port,
    )

    try:
        uvicorn.run(
            "nfe_distribution.asgi:app",
            host=settings.server.host,
            port=settings.server.port,
            log_level=settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")


if __name__ == "__main__":
    main()

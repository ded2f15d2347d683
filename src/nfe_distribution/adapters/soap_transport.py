"""
SOAP transport adapter — one mutual-TLS POST to NFeDistribuicaoDFe via httpx.

Adapter layer — implements the DistributionTransport port.

Per call:
  1. Build an ssl.SSLContext presenting the identity's certificate and key
  2. Open an httpx.Client bound to that context (never shared across calls
     or identities; the client certificate is connection-level state)
  3. POST the envelope, streaming the body under a size ceiling and deadline
  4. Close the client

The ssl module only loads client credentials from files, so the PEMs go
into a private temporary directory for the duration of load_cert_chain.
The key is written encrypted under a one-time passphrase and the directory
is removed before any network I/O starts.

Peer verification is OFF unless configured: the national endpoint's chain
has historically failed stock validation. This exception applies to this
endpoint only and is logged on every use.

No retries here — retry policy belongs to the caller.
"""

from __future__ import annotations

import secrets
import ssl
import tempfile
import time
from pathlib import Path

import httpx
import structlog
from cryptography.hazmat.primitives import serialization

from nfe_distribution.domain.errors import TransportError, TransportTimeoutError
from nfe_distribution.domain.models import Identity, RawResponse
from nfe_distribution.result import ErrorCode, Result

log = structlog.get_logger()

SOAP_CONTENT_TYPE = "application/soap+xml; charset=utf-8"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RESPONSE_BYTES = 50 * 1024 * 1024


def build_client_ssl_context(
    identity: Identity,
    verify_peer: bool = False,
    ca_bundle: Path | None = None,
) -> ssl.SSLContext:
    """Create a TLS client context carrying the identity as client credential."""
    if verify_peer:
        context = ssl.create_default_context(cafile=str(ca_bundle) if ca_bundle else None)
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        log.warning("transport.peer_verification_disabled")

    passphrase = secrets.token_urlsafe(32)
    key_pem = identity.private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("ascii")),
    )

    with tempfile.TemporaryDirectory(prefix="nfe-mtls-") as directory:
        cert_path = Path(directory) / "client-cert.pem"
        key_path = Path(directory) / "client-key.pem"
        cert_path.write_text(identity.certificate.pem, encoding="ascii")
        key_path.write_bytes(key_pem)
        context.load_cert_chain(str(cert_path), str(key_path), password=passphrase)

    return context


class SoapDistributionTransport:
    """
    POST SOAP envelopes to the distribution endpoint over mutual TLS.

    Implements the DistributionTransport port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(
        self,
        url: str,
        soap_action: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        verify_peer: bool = False,
        ca_bundle: Path | None = None,
    ) -> None:
        self._url = url
        self._soap_action = soap_action
        self._timeout = timeout
        self._max_response_bytes = max_response_bytes
        self._verify_peer = verify_peer
        self._ca_bundle = ca_bundle

    def send(self, envelope: str, identity: Identity) -> Result[RawResponse]:
        """
        Send the envelope and return the raw response.

        Non-2xx responses that carry a body are returned as a RawResponse,
        because the service reports its errors in-band.
        Returns Result.failure(TRANSPORT_ERROR, ...) when no interpretable
        body is available, or Result.failure(TIMEOUT_ERROR, ...) on timeout.
        """
        return Result.from_computation(
            lambda: self._do_send(envelope, identity),
            ErrorCode.TRANSPORT_ERROR,
            "Distribution request failed",
        )

    def _do_send(self, envelope: str, identity: Identity) -> RawResponse:
        """HTTP POST — exceptions caught by from_computation."""
        try:
            context = build_client_ssl_context(identity, self._verify_peer, self._ca_bundle)
        except (ssl.SSLError, OSError, ValueError) as e:
            raise TransportError(f"Client TLS credentials could not be loaded: {e}") from e

        started = time.monotonic()
        try:
            with (
                httpx.Client(verify=context, timeout=self._timeout) as client,
                client.stream(
                    "POST",
                    self._url,
                    content=envelope.encode("utf-8"),
                    headers={
                        "Content-Type": SOAP_CONTENT_TYPE,
                        "SOAPAction": self._soap_action,
                    },
                ) as response,
            ):
                content = self._read_body(response, started)
                status_code = response.status_code
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"No response within {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {self._url} failed: {e}") from e

        log.info(
            "transport.response",
            status=status_code,
            size_bytes=len(content),
            elapsed_seconds=round(time.monotonic() - started, 3),
        )

        raw = RawResponse(status_code=status_code, content=content)
        if raw.ok:
            return raw
        if content.strip():
            log.warning("transport.error_status_with_body", status=status_code)
            return raw
        raise TransportError(f"HTTP {status_code} without a response body")

    def _read_body(self, response: httpx.Response, started: float) -> bytes:
        """Read the streamed body, enforcing the size ceiling and overall deadline."""
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self._max_response_bytes:
            raise TransportError(
                f"Response of {declared} bytes exceeds the {self._max_response_bytes} byte limit"
            )

        chunks: list[bytes] = []
        received = 0
        for chunk in response.iter_bytes():
            received += len(chunk)
            if received > self._max_response_bytes:
                raise TransportError(
                    f"Response exceeds the {self._max_response_bytes} byte limit"
                )
            if time.monotonic() - started > self._timeout:
                raise TransportTimeoutError(f"Response not completed within {self._timeout}s")
            chunks.append(chunk)
        return b"".join(chunks)

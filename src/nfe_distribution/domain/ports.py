"""
Ports — Protocol-based interfaces for the pipeline's infrastructure adapters.

These define WHAT the orchestrator needs without specifying HOW:

  Domain ← Ports (protocols) ← Adapters (implementations)

Adapters satisfy a port structurally, by implementing its methods. Every
method returns a Result so failures travel on the railway instead of
raising across the boundary.

Call sequence for one distribution request:
  1. CertificateReader     → Identity (key + certificate)
  2. RequestComposer       → unsigned distDFeInt fragment
  3. XmlSigner             → fragment with enveloped Signature
  4. RequestComposer       → SOAP envelope
  5. DistributionTransport → RawResponse over mutual TLS
  6. ResponseDecoder       → DistributionResult
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from nfe_distribution.domain.models import (
    DistributionQuery,
    DistributionResult,
    Identity,
    RawResponse,
)
from nfe_distribution.result import Result


@runtime_checkable
class CertificateReader(Protocol):
    """
    Port: decode a password-protected PKCS#12 container into an Identity.

    Does not judge validity dates; the orchestrator checks expiry.
    """

    def read(self, container: bytes, password: str) -> Result[Identity]: ...


@runtime_checkable
class XmlSigner(Protocol):
    """
    Port: produce an enveloped XML-DSig signature over the request element.

    `sign` returns only the Signature block; `sign_enveloped` returns the
    signed fragment with the block appended as the element's last child.
    """

    def sign(self, fragment: str, identity: Identity) -> Result[str]: ...

    def sign_enveloped(self, fragment: str, identity: Identity) -> Result[str]: ...


@runtime_checkable
class RequestComposer(Protocol):
    """Port: render the request body and wrap the signed body in SOAP."""

    def build_query(self, query: DistributionQuery) -> Result[str]: ...

    def wrap_envelope(self, signed_xml: str) -> str: ...


@runtime_checkable
class DistributionTransport(Protocol):
    """
    Port: one mutual-TLS round-trip to the distribution endpoint.

    Non-2xx responses with a body are returned, not failed: the service
    reports errors in-band.
    """

    def send(self, envelope: str, identity: Identity) -> Result[RawResponse]: ...


@runtime_checkable
class ResponseDecoder(Protocol):
    """Port: turn a raw response body into a DistributionResult."""

    def decode(self, raw: bytes) -> Result[DistributionResult]: ...

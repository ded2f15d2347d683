"""
Domain errors — the typed exceptions carried inside Failure results.

Adapters raise these internally; Result.from_computation captures them at
the adapter boundary and uses each class's `code` as the failure code.
Always raise with `from` so the library exception stays reachable as
__cause__.
"""

from __future__ import annotations

from nfe_distribution.result import ErrorCode


class DistributionError(Exception):
    """Base class for every error the distribution client reports."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR


class CertificateError(DistributionError):
    """The PKCS#12 container cannot be read or does not hold one identity."""

    code = ErrorCode.CERTIFICATE_ERROR


class ExpiredCertificateError(DistributionError):
    """The identity certificate is no longer valid."""

    code = ErrorCode.EXPIRED_CERTIFICATE


class InvalidQueryError(DistributionError, ValueError):
    """Query parameters are malformed (tax ID, state, cursor or key)."""

    code = ErrorCode.INVALID_QUERY


class SignatureTargetNotFoundError(DistributionError):
    """The request fragment is not XML or lacks the element to sign."""

    code = ErrorCode.SIGNATURE_TARGET_NOT_FOUND


class SigningError(DistributionError):
    """Digest or RSA signature computation failed."""

    code = ErrorCode.SIGNING_ERROR


class TransportError(DistributionError):
    """No interpretable response body was obtained."""

    code = ErrorCode.TRANSPORT_ERROR


class TransportTimeoutError(TransportError):
    code = ErrorCode.TIMEOUT_ERROR


class DecodeError(DistributionError):
    """The response document as a whole is unparseable."""

    code = ErrorCode.DECODE_ERROR

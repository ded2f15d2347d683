"""
PKCS#12 reader adapter — identity extraction from a .pfx/.p12 container.

Adapter layer — implements the CertificateReader port using:
  - cryptography (PyCA): password-based decryption of the container, the
    private key, and the certificate that belongs to it
  - asn1crypto: walking the plaintext SafeContents to make sure the file
    holds exactly one key bag, and decoding ICP-Brasil otherName values

Pipeline:
  raw container bytes
    → cryptography: pkcs12.load_pkcs12(data, password)
    → asn1crypto: Pfx.load() → authenticated_safe → count key bags
    → cryptography: subject, serial, validity, DER/PEM encodings
    → Identity (domain model)

Expiry is NOT checked here: reading a certificate does not imply it is
usable. The orchestrator enforces the validity window.
"""

from __future__ import annotations

import base64
import binascii

import structlog
from asn1crypto import core
from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from nfe_distribution.domain.errors import CertificateError
from nfe_distribution.domain.models import CertificateInfo, Identity
from nfe_distribution.result import ErrorCode, Result

log = structlog.get_logger()

# ICP-Brasil otherName OIDs carried in the subject alternative name.
#   2.16.76.1.3.3: CNPJ of the company (14 digits)
#   2.16.76.1.3.1: holder data: birth date (8) + CPF (11) + ...
_OID_CNPJ = x509.ObjectIdentifier("2.16.76.1.3.3")
_OID_HOLDER_DATA = x509.ObjectIdentifier("2.16.76.1.3.1")

_KEY_BAG_TYPES = frozenset({"key_bag", "pkcs8_shrouded_key_bag"})


def decode_container(container_b64: str) -> bytes:
    """Decode a base64-encoded container, as received from API callers."""
    try:
        return base64.b64decode(container_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CertificateError("Certificate container is not valid base64") from e


# ─────────────────────── Container structure ───────────────────────


def _count_plaintext_key_bags(container: bytes) -> int:
    """
    Count key bags in the unencrypted SafeContents of the container.

    Shrouded key bags normally live in a plain `data` ContentInfo (the key
    itself is encrypted inside the bag); certificate bags live in the
    password-encrypted part and are not visible here.
    """
    pfx = asn1_pkcs12.Pfx.load(container)
    count = 0
    for content_info in pfx.authenticated_safe:
        if content_info["content_type"].native != "data":
            continue
        safe_contents = asn1_pkcs12.SafeContents.load(content_info["content"].native)
        count += sum(1 for bag in safe_contents if bag["bag_id"].native in _KEY_BAG_TYPES)
    return count


# ─────────────────────── X.509 metadata ───────────────────────


def _subject_attributes(name: x509.Name) -> dict[str, str]:
    """Map RFC 4514 short names (CN, O, OU...) to values; first occurrence wins."""
    attributes: dict[str, str] = {}
    for attribute in name:
        value = attribute.value
        text = value if isinstance(value, str) else value.hex()
        attributes.setdefault(attribute.rfc4514_attribute_name, text)
    return attributes


def _other_name_text(value: bytes) -> str:
    """Decode the DER value of an otherName (OCTET STRING or a string type)."""
    native = core.load(value).native
    if isinstance(native, bytes):
        return native.decode("latin-1")
    return str(native)


def _digits(text: str) -> str:
    return "".join(ch for ch in text if ch.isdigit())


def _tax_id_from_san(cert: x509.Certificate) -> str | None:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return None

    other_names = san.get_values_for_type(x509.OtherName)
    try:
        for other_name in other_names:
            if other_name.type_id == _OID_CNPJ:
                cnpj = _digits(_other_name_text(other_name.value))
                if len(cnpj) == 14 and set(cnpj) != {"0"}:
                    return cnpj
        for other_name in other_names:
            if other_name.type_id == _OID_HOLDER_DATA:
                cpf = _digits(_other_name_text(other_name.value))[8:19]
                if len(cpf) == 11 and set(cpf) != {"0"}:
                    return cpf
    except ValueError as e:
        log.warning("certificate.malformed_other_name", error=str(e))
    return None


def _extract_tax_id(cert: x509.Certificate, subject: dict[str, str]) -> str | None:
    """
    Find the holder's CNPJ/CPF.

    Order: subject alternative name otherNames, a subject attribute with the
    CNPJ OID, then the "NAME:DIGITS" common-name convention.
    """
    tax_id = _tax_id_from_san(cert)
    if tax_id:
        return tax_id

    from_subject = _digits(subject.get(_OID_CNPJ.dotted_string, ""))
    if len(from_subject) in (11, 14):
        return from_subject

    _, _, suffix = subject.get("CN", "").rpartition(":")
    from_cn = _digits(suffix)
    if len(from_cn) in (11, 14):
        return from_cn
    return None


def _certificate_info(cert: x509.Certificate) -> CertificateInfo:
    subject = _subject_attributes(cert.subject)
    return CertificateInfo(
        der=cert.public_bytes(serialization.Encoding.DER),
        pem=cert.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        subject=subject,
        serial_number=cert.serial_number,
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        tax_id=_extract_tax_id(cert, subject),
    )


# ─────────────────────── Public reader ───────────────────────


class Pkcs12CertificateReader:
    """
    Decode a password-protected PKCS#12 container into an Identity.

    Implements the CertificateReader port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def read(self, container: bytes, password: str) -> Result[Identity]:
        """
        Returns Result[Identity] on success.
        Returns Result.failure(CERTIFICATE_ERROR, ...) when the container is
        unreadable, the password is wrong, or it does not hold exactly one
        RSA key with its certificate.
        """
        return Result.from_computation(
            lambda: self._do_read(container, password),
            ErrorCode.CERTIFICATE_ERROR,
            "Failed to read PKCS#12 certificate",
        )

    def _do_read(self, container: bytes, password: str) -> Identity:
        if not container:
            raise CertificateError("Certificate container is empty")

        try:
            bundle = pkcs12.load_pkcs12(container, password.encode("utf-8") if password else None)
        except ValueError as e:
            raise CertificateError("Invalid password or PKCS#12 data") from e

        if bundle.key is None:
            raise CertificateError("No private key bag found in container")

        try:
            key_bags = _count_plaintext_key_bags(container)
        except ValueError as e:
            raise CertificateError("PKCS#12 structure could not be inspected") from e
        if key_bags > 1:
            raise CertificateError(f"Expected one private key bag, found {key_bags}")

        if bundle.cert is None:
            if bundle.additional_certs:
                raise CertificateError("No certificate bag matches the private key")
            raise CertificateError("No certificate bag found in container")

        if not isinstance(bundle.key, rsa.RSAPrivateKey):
            raise CertificateError(
                f"Only RSA keys can sign distribution requests, got {type(bundle.key).__name__}"
            )

        info = _certificate_info(bundle.cert.certificate)
        log.info(
            "certificate.loaded",
            holder=info.holder_name,
            tax_id=info.tax_id,
            serial=info.serial_hex,
            not_after=info.not_after.isoformat(),
            chain_certs=len(bundle.additional_certs),
        )
        return Identity(private_key=bundle.key, certificate=info)

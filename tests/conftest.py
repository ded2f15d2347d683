"""
Shared test fixtures and helpers for the nfe-distribution test suite.

Test identities are generated once per session with cryptography: an RSA
key, a certificate carrying the ICP-Brasil CNPJ otherName, and PKCS#12
containers built from them (valid, expired, EC-keyed, certificate-only).

Also provides ResultAssertions and builders for docZip items and
retDistDFeInt responses.
"""

from __future__ import annotations

import base64
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import pytest
from asn1crypto import core
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from nfe_distribution.adapters.pkcs12_reader import Pkcs12CertificateReader
from nfe_distribution.domain.models import Identity
from nfe_distribution.result import ErrorCode, FailureDescription, Result

T = TypeVar("T")

TAX_ID = "12345678000199"
HOLDER = f"EMPRESA TESTE:{TAX_ID}"
PASSWORD = "secret"
ACCESS_KEY = "35240112345678000199550010000001231000001234"


# ─────────────────────── Result assertions ───────────────────────


class ResultAssertions:
    """Expressive test assertions for Result values."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        context = f" — {message}" if message else ""
        assert result.is_success(), (
            f"Expected Success but got Failure("
            f"{result.error().code.value}: {result.error().message!r}){context}"
        )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        context = f" — {message}" if message else ""
        assert result.is_failure(), f"Expected Failure but got Success({result.value()!r}){context}"
        error = result.error()
        if expected_code is not None:
            assert error.code == expected_code, (
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error


# ─────────────────────── Test PKI ───────────────────────


@dataclass(frozen=True)
class TestIdentity:
    """Key, certificate and the PKCS#12 container that bundles them."""

    __test__ = False

    key: Any
    certificate: x509.Certificate
    container: bytes
    password: str = PASSWORD


def build_certificate(
    key: Any,
    common_name: str = HOLDER,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
    cnpj: str | None = TAX_ID,
    serial_number: int = 0x1A2B3C,
) -> x509.Certificate:
    """Self-signed certificate shaped like an ICP-Brasil e-CNPJ."""
    now = datetime.now(UTC)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "BR"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "ICP-Brasil"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(serial_number)
        .not_valid_before(not_before or now - timedelta(days=30))
        .not_valid_after(not_after or now + timedelta(days=335))
    )
    if cnpj is not None:
        other_name = x509.OtherName(
            x509.ObjectIdentifier("2.16.76.1.3.3"),
            core.OctetString(cnpj.encode("ascii")).dump(),
        )
        builder = builder.add_extension(x509.SubjectAlternativeName([other_name]), critical=False)
    return builder.sign(key, hashes.SHA256())


def build_container(key: Any, certificate: x509.Certificate | None, password: str = PASSWORD) -> bytes:
    return pkcs12.serialize_key_and_certificates(
        b"test",
        key,
        certificate,
        None,
        serialization.BestAvailableEncryption(password.encode("utf-8")),
    )


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def identity(rsa_key: rsa.RSAPrivateKey) -> TestIdentity:
    """A valid e-CNPJ identity for TAX_ID."""
    certificate = build_certificate(rsa_key)
    return TestIdentity(rsa_key, certificate, build_container(rsa_key, certificate))


@pytest.fixture(scope="session")
def expired_identity(rsa_key: rsa.RSAPrivateKey) -> TestIdentity:
    """Same key; the certificate's notAfter was yesterday."""
    now = datetime.now(UTC)
    certificate = build_certificate(
        rsa_key,
        not_before=now - timedelta(days=366),
        not_after=now - timedelta(days=1),
    )
    return TestIdentity(rsa_key, certificate, build_container(rsa_key, certificate))


@pytest.fixture(scope="session")
def ec_identity() -> TestIdentity:
    key = ec.generate_private_key(ec.SECP256R1())
    certificate = build_certificate(key)
    return TestIdentity(key, certificate, build_container(key, certificate))


# ─────────────────────── Response builders ───────────────────────


def deflate_raw(data: bytes) -> bytes:
    """Raw DEFLATE (no zlib header), as the service compresses docZip items."""
    compressor = zlib.compressobj(wbits=-zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def doc_zip(nsu: str, schema: str, inner_xml: str) -> str:
    payload = base64.b64encode(deflate_raw(inner_xml.encode("utf-8"))).decode("ascii")
    return f'<docZip NSU="{nsu}" schema="{schema}">{payload}</docZip>'


def summary_xml(access_key: str = ACCESS_KEY, value: str = "1500.75") -> str:
    return (
        '<resNFe xmlns="http://www.portalfiscal.inf.br/nfe" versao="1.01">'
        f"<chNFe>{access_key}</chNFe>"
        "<CNPJ>98765432000110</CNPJ>"
        "<xNome>FORNECEDOR LTDA</xNome>"
        "<IE>123456789</IE>"
        "<dhEmi>2024-01-15T10:30:00-03:00</dhEmi>"
        "<tpNF>1</tpNF>"
        f"<vNF>{value}</vNF>"
        "<digVal>abc123=</digVal>"
        "<dhRecbto>2024-01-15T10:31:00-03:00</dhRecbto>"
        "<nProt>135240000000001</nProt>"
        "<cSitNFe>1</cSitNFe>"
        "</resNFe>"
    )


def event_xml(access_key: str = ACCESS_KEY) -> str:
    return (
        '<resEvento xmlns="http://www.portalfiscal.inf.br/nfe" versao="1.01">'
        "<cOrgao>35</cOrgao>"
        "<CNPJ>98765432000110</CNPJ>"
        f"<chNFe>{access_key}</chNFe>"
        "<dhEvento>2024-01-16T09:00:00-03:00</dhEvento>"
        "<tpEvento>110111</tpEvento>"
        "<nSeqEvento>1</nSeqEvento>"
        "<xEvento>Cancelamento</xEvento>"
        "</resEvento>"
    )


def full_document_xml(access_key: str = ACCESS_KEY) -> str:
    return (
        '<nfeProc xmlns="http://www.portalfiscal.inf.br/nfe" versao="4.00">'
        f'<NFe><infNFe Id="NFe{access_key}" versao="4.00"><ide><cUF>35</cUF></ide></infNFe></NFe>'
        f"<protNFe><infProt><chNFe>{access_key}</chNFe><cStat>100</cStat></infProt></protNFe>"
        "</nfeProc>"
    )


def distribution_response(
    c_stat: str = "138",
    reason: str = "Documento(s) localizado(s)",
    last_nsu: str = "000000000000002",
    max_nsu: str = "000000000000002",
    items: list[str] | None = None,
) -> bytes:
    """A retDistDFeInt wrapped in the SOAP 1.2 response envelope."""
    batch = f"<loteDistDFeInt>{''.join(items)}</loteDistDFeInt>" if items is not None else ""
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<soap:Envelope xmlns:soap="http://www.w3.org/2003/05/soap-envelope">'
        "<soap:Body>"
        '<nfeDistDFeInteresseResponse xmlns="http://www.portalfiscal.inf.br/nfe/wsdl/NFeDistribuicaoDFe">'
        "<nfeDistDFeInteresseResult>"
        '<retDistDFeInt xmlns="http://www.portalfiscal.inf.br/nfe" versao="1.01">'
        "<tpAmb>1</tpAmb>"
        "<verAplic>1.7.6</verAplic>"
        f"<cStat>{c_stat}</cStat>"
        f"<xMotivo>{reason}</xMotivo>"
        "<dhResp>2024-01-20T12:00:00-03:00</dhResp>"
        f"<ultNSU>{last_nsu}</ultNSU>"
        f"<maxNSU>{max_nsu}</maxNSU>"
        f"{batch}"
        "</retDistDFeInt>"
        "</nfeDistDFeInteresseResult>"
        "</nfeDistDFeInteresseResponse>"
        "</soap:Body>"
        "</soap:Envelope>"
    ).encode("utf-8")


@pytest.fixture(scope="session")
def domain_identity(identity: TestIdentity) -> Identity:
    """The valid test identity as the reader adapter decodes it."""
    return Pkcs12CertificateReader().read(identity.container, identity.password).value()

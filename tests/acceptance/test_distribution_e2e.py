"""
Acceptance tests — every real adapter wired by the composition root,
talking to a respx-mocked NFeDistribuicaoDFe endpoint.

The flow under test:
  PKCS#12 container → Identity → signed distDFeInt → SOAP envelope
    → mutual-TLS POST (mocked) → retDistDFeInt → decoded documents

Also drives the HTTP API with the real pipeline installed, and the pager
across two pages.
"""

from __future__ import annotations

import base64

import httpx
import pytest
import respx
from cryptography.hazmat.primitives.serialization import Encoding
from fastapi.testclient import TestClient
from lxml import etree

from nfe_distribution import asgi
from nfe_distribution.adapters.xml_signer import DSIG_NS
from nfe_distribution.config import AppSettings
from nfe_distribution.domain.models import EventSummary, Summary
from nfe_distribution.main import create_pager, create_pipeline
from nfe_distribution.result import ErrorCode
from tests.conftest import (
    ACCESS_KEY,
    PASSWORD,
    TAX_ID,
    ResultAssertions,
    TestIdentity,
    distribution_response,
    doc_zip,
    event_xml,
    summary_xml,
)

pytestmark = pytest.mark.acceptance

SETTINGS = AppSettings(_env_file=None)
URL = SETTINGS.endpoint_url
NFE = {"n": "http://www.portalfiscal.inf.br/nfe", "ds": DSIG_NS}


def _sent_request(route: respx.Route) -> etree._Element:
    """The distDFeInt element of the last envelope POSTed to the endpoint."""
    envelope = etree.fromstring(route.calls.last.request.content)
    return next(envelope.iter("{http://www.portalfiscal.inf.br/nfe}distDFeInt"))


class TestFetchDocumentsEndToEnd:
    """
    GIVEN a valid e-CNPJ container and an endpoint returning one summary and one event
    WHEN fetch_documents runs with every real adapter
    THEN the request is signed and well-formed and both documents are decoded.
    """

    @respx.mock
    def test_round_trip(self, identity: TestIdentity) -> None:
        route = respx.post(URL).mock(
            return_value=httpx.Response(
                200,
                content=distribution_response(
                    items=[
                        doc_zip("000000000000001", "resNFe_v1.01.xsd", summary_xml()),
                        doc_zip("000000000000002", "resEvento_1.01.xsd", event_xml()),
                    ]
                ),
            )
        )
        fetch_fn, _ = create_pipeline(SETTINGS)

        result = ResultAssertions.assert_success(
            fetch_fn(identity.container, PASSWORD, TAX_ID, "SP", "0")
        )

        assert [type(d) for d in result.documents] == [Summary, EventSummary]
        assert result.summaries[0].access_key == ACCESS_KEY
        assert result.summaries[0].total_value == 1500.75

        request = _sent_request(route)
        assert request.get("Id") == "DistDFeInt"
        assert request.findtext("n:CNPJ", namespaces=NFE) == TAX_ID
        assert request.findtext("n:cUFAutor", namespaces=NFE) == "35"
        assert request.findtext("n:distNSU/n:ultNSU", namespaces=NFE) == "000000000000000"
        assert request.find("ds:Signature/ds:SignatureValue", namespaces=NFE).text
        certificate_b64 = request.findtext(
            "ds:Signature/ds:KeyInfo/ds:X509Data/ds:X509Certificate", namespaces=NFE
        )
        assert base64.b64decode(certificate_b64) == identity.certificate.public_bytes(Encoding.DER)

    @respx.mock
    def test_query_by_access_key(self, identity: TestIdentity) -> None:
        route = respx.post(URL).mock(
            return_value=httpx.Response(200, content=distribution_response(c_stat="137", items=None))
        )
        fetch_fn, _ = create_pipeline(SETTINGS)

        fetch_fn(identity.container, PASSWORD, TAX_ID, "SP", access_key=ACCESS_KEY)

        request = _sent_request(route)
        assert request.findtext("n:consChNFe/n:chNFe", namespaces=NFE) == ACCESS_KEY
        assert request.find("n:distNSU", namespaces=NFE) is None

    @respx.mock
    def test_expired_certificate_makes_no_request(self, expired_identity: TestIdentity) -> None:
        route = respx.post(URL).mock(return_value=httpx.Response(200, content=distribution_response()))
        fetch_fn, _ = create_pipeline(SETTINGS)

        result = fetch_fn(expired_identity.container, PASSWORD, TAX_ID, "SP", "0")

        ResultAssertions.assert_failure(result, ErrorCode.EXPIRED_CERTIFICATE)
        assert not route.called

    @respx.mock
    def test_gateway_error_page_is_a_transport_failure(self, identity: TestIdentity) -> None:
        respx.post(URL).mock(return_value=httpx.Response(502, content=b"<html>Bad Gateway"))
        fetch_fn, _ = create_pipeline(SETTINGS)

        result = fetch_fn(identity.container, PASSWORD, TAX_ID, "SP", "0")

        ResultAssertions.assert_failure(result, ErrorCode.TRANSPORT_ERROR)


class TestPagerEndToEnd:
    @respx.mock
    def test_collects_two_pages(self, identity: TestIdentity) -> None:
        route = respx.post(URL).mock(
            side_effect=[
                httpx.Response(
                    200,
                    content=distribution_response(
                        last_nsu="000000000000001",
                        max_nsu="000000000000002",
                        items=[doc_zip("000000000000001", "resNFe_v1.01.xsd", summary_xml())],
                    ),
                ),
                httpx.Response(
                    200,
                    content=distribution_response(
                        last_nsu="000000000000002",
                        max_nsu="000000000000002",
                        items=[doc_zip("000000000000002", "resEvento_1.01.xsd", event_xml())],
                    ),
                ),
            ]
        )
        fetch_fn, _ = create_pipeline(SETTINGS)
        pager = create_pager(SETTINGS, fetch_fn, identity.container, PASSWORD, TAX_ID, "SP")

        batch = ResultAssertions.assert_success(pager.collect(0))

        assert [d.nsu for d in batch.documents] == [1, 2]
        assert batch.pages == 2
        assert route.call_count == 2
        second = etree.fromstring(route.calls[1].request.content)
        assert "000000000000001" in etree.tostring(second, encoding="unicode")


class TestApiEndToEnd:
    @pytest.fixture()
    def client(self) -> TestClient:
        asgi._error_message = None
        asgi._fetch_fn, asgi._validate_fn = create_pipeline(SETTINGS)
        return TestClient(asgi.app, raise_server_exceptions=False)

    @respx.mock
    def test_consulta(self, client: TestClient, identity: TestIdentity) -> None:
        respx.post(URL).mock(
            return_value=httpx.Response(
                200,
                content=distribution_response(
                    items=[doc_zip("000000000000001", "resNFe_v1.01.xsd", summary_xml())]
                ),
            )
        )

        response = client.post(
            "/manifest/consulta",
            json={
                "certificateBase64": base64.b64encode(identity.container).decode("ascii"),
                "certificatePassword": PASSWORD,
                "cnpj": "12.345.678/0001-99",
                "uf": "SP",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["cStat"] == "138"
        assert body["notas"][0]["chaveNfe"] == ACCESS_KEY
        assert body["notas"][0]["valorNfe"] == 1500.75

    def test_validar(self, client: TestClient, identity: TestIdentity) -> None:
        response = client.post(
            "/manifest/certificado/validar",
            json={
                "certificateBase64": base64.b64encode(identity.container).decode("ascii"),
                "certificatePassword": PASSWORD,
            },
        )

        assert response.status_code == 200
        certificate = response.json()["certificado"]
        assert certificate["cnpj"] == TAX_ID
        assert certificate["expirado"] is False
        assert certificate["serialNumber"] == format(identity.certificate.serial_number, "x")

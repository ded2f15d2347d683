"""
Request composer adapter — distDFeInt body and SOAP 1.2 envelope templates.

Adapter layer — implements the RequestComposer port with plain string
templates. Every interpolated value is validated digits by the time it
reaches a template (DistributionQuery enforces it), so no escaping is
needed and the output carries no whitespace between elements.

Two mutually exclusive request shapes:

  by cursor:  <distNSU><ultNSU>000000000000123</ultNSU></distNSU>
  by key:     <consChNFe><chNFe>35...44 digits</chNFe></consChNFe>

The envelope places the signed fragment verbatim inside nfeDadosMsg as an
XML island; wrapping performs no validation.
"""

from __future__ import annotations

from nfe_distribution.domain.models import DistributionQuery
from nfe_distribution.result import ErrorCode, Result

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
WSDL_NS = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeDistribuicaoDFe"
SOAP_ACTION = f"{WSDL_NS}/nfeDistDFeInteresse"

ENVIRONMENTS = {"production": "1", "homologation": "2"}

_REQUEST = (
    '<distDFeInt xmlns="{ns}" versao="{version}">'
    "<tpAmb>{environment}</tpAmb>"
    "<cUFAutor>{state}</cUFAutor>"
    "<{tax_tag}>{tax_id}</{tax_tag}>"
    "{selector}"
    "</distDFeInt>"
)

_BY_CURSOR = "<distNSU><ultNSU>{nsu}</ultNSU></distNSU>"
_BY_KEY = "<consChNFe><chNFe>{key}</chNFe></consChNFe>"

_ENVELOPE = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<soap12:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"'
    ' xmlns:xsd="http://www.w3.org/2001/XMLSchema"'
    ' xmlns:soap12="http://www.w3.org/2003/05/soap-envelope">'
    "<soap12:Header/>"
    "<soap12:Body>"
    '<nfeDistDFeInteresse xmlns="{wsdl_ns}">'
    "<nfeDadosMsg>{payload}</nfeDadosMsg>"
    "</nfeDistDFeInteresse>"
    "</soap12:Body>"
    "</soap12:Envelope>"
)


def format_nsu(nsu: int) -> str:
    """Render a cursor as the 15-digit, left-zero-padded wire form."""
    return str(nsu).zfill(15)


class DistributionRequestComposer:
    """
    Render distribution requests for one deployment.

    Implements the RequestComposer port. The environment flag (tpAmb) and
    schema version are deployment constants, not per-call data.
    """

    def __init__(self, environment: str = "production", version: str = "1.01") -> None:
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"environment must be one of {sorted(ENVIRONMENTS)}, got {environment!r}"
            )
        self._environment = ENVIRONMENTS[environment]
        self._version = version

    def build_query(self, query: DistributionQuery) -> Result[str]:
        """
        Render the unsigned distDFeInt element for the query.

        Returns Result.failure(INVALID_QUERY, ...) only if rendering itself
        fails; field validation happens when the query is created.
        """
        return Result.from_computation(
            lambda: self._render(query),
            ErrorCode.INVALID_QUERY,
            "Failed to compose distribution request",
        )

    def wrap_envelope(self, signed_xml: str) -> str:
        """Wrap a signed fragment in the SOAP 1.2 envelope. Pure templating."""
        return _ENVELOPE.format(wsdl_ns=WSDL_NS, payload=signed_xml)

    def _render(self, query: DistributionQuery) -> str:
        if query.access_key is not None:
            selector = _BY_KEY.format(key=query.access_key)
        else:
            selector = _BY_CURSOR.format(nsu=format_nsu(query.last_nsu or 0))

        return _REQUEST.format(
            ns=NFE_NS,
            version=self._version,
            environment=self._environment,
            state=query.jurisdiction,
            tax_tag="CNPJ" if len(query.tax_id) == 14 else "CPF",
            tax_id=query.tax_id,
            selector=selector,
        )

"""
Response decoder adapter — retDistDFeInt parsing and docZip decompression.

Adapter layer — implements the ResponseDecoder port using lxml with a
hardened parser (no entity expansion, no network access).

Pipeline:
  raw SOAP body
    → lxml: parse (failure here is a hard DecodeError)
    → cStat, xMotivo, ultNSU, maxNSU (+ tpAmb, verAplic, dhResp)
    → if cStat == 138: for each loteDistDFeInt/docZip
        → base64 decode → raw inflate (no zlib header) → parse inner XML
        → classify by schema attribute → Summary | FullDocument | EventSummary
    → DistributionResult (domain model)

Partial-failure policy: an item that fails to decompress, parse or map is
logged and dropped. One corrupt document never voids the rest of the page.

All lookups are by local tag name in any namespace, first match in
document order. Numeric fields that fail to parse default to zero.
"""

from __future__ import annotations

import base64
import binascii
import zlib
from collections.abc import Callable
from datetime import datetime

import structlog
from lxml import etree

from nfe_distribution.domain.errors import DecodeError
from nfe_distribution.domain.models import (
    DOCUMENTS_FOUND,
    DistributionResult,
    DocumentRecord,
    EventSummary,
    FullDocument,
    Summary,
)
from nfe_distribution.result import ErrorCode, Result

log = structlog.get_logger()

DEFAULT_MAX_DOCUMENT_BYTES = 10 * 1024 * 1024

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


# ─────────────────────── Tag helpers ───────────────────────


def _find(node: etree._Element, tag: str) -> etree._Element | None:
    return next(node.iter(f"{{*}}{tag}"), None)


def _text(node: etree._Element, tag: str) -> str:
    found = _find(node, tag)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _optional_text(node: etree._Element, tag: str) -> str | None:
    return _text(node, tag) or None


def _to_int(value: str, field_name: str) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        log.warning("decoder.invalid_number", field=field_name, value=value)
        return 0


def _to_float(value: str, field_name: str) -> float:
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError:
        log.warning("decoder.invalid_number", field=field_name, value=value)
        return 0.0


def _to_datetime(value: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        log.warning("decoder.invalid_timestamp", value=value)
        return None


# ─────────────────────── Variant mappers ───────────────────────


def _map_summary(nsu: int, schema: str, doc: etree._Element, xml: str) -> Summary:
    return Summary(
        nsu=nsu,
        schema=schema,
        access_key=_text(doc, "chNFe"),
        emitter_tax_id=_text(doc, "CNPJ") or _text(doc, "CPF"),
        emitter_name=_text(doc, "xNome"),
        emitter_registration=_text(doc, "IE"),
        issued_at=_to_datetime(_text(doc, "dhEmi")),
        operation_type=_text(doc, "tpNF"),
        total_value=_to_float(_text(doc, "vNF"), "vNF"),
        digest_value=_text(doc, "digVal"),
        status=_text(doc, "cSitNFe"),
        raw_xml=xml,
    )


def _map_full_document(nsu: int, schema: str, doc: etree._Element, xml: str) -> FullDocument:
    access_key = _text(doc, "chNFe")
    if not access_key:
        inf_nfe = _find(doc, "infNFe")
        if inf_nfe is not None:
            access_key = inf_nfe.get("Id", "").removeprefix("NFe")
    return FullDocument(nsu=nsu, schema=schema, access_key=access_key, raw_xml=xml)


def _map_event(nsu: int, schema: str, doc: etree._Element, xml: str) -> EventSummary:
    return EventSummary(
        nsu=nsu,
        schema=schema,
        access_key=_text(doc, "chNFe"),
        event_type=_text(doc, "tpEvento"),
        event_description=_text(doc, "xEvento"),
        raw_xml=xml,
    )


type _Mapper = Callable[[int, str, etree._Element, str], DocumentRecord]


def _classify(schema: str) -> _Mapper | None:
    """Pick the mapper for a schema identifier such as 'resNFe_v1.01.xsd'."""
    if "resNFe" in schema:
        return _map_summary
    if "procNFe" in schema or "nfeProc" in schema:
        return _map_full_document
    if "resEvento" in schema:
        return _map_event
    return None


# ─────────────────────── Item decoding ───────────────────────


def _inflate(payload: str, limit: int) -> bytes:
    """Base64 decode, then raw-inflate with a ceiling on the decompressed size."""
    compressed = base64.b64decode("".join(payload.split()), validate=True)
    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    data = inflater.decompress(compressed, limit)
    if not inflater.eof:
        if inflater.unconsumed_tail or len(data) >= limit:
            raise ValueError(f"decompressed document exceeds {limit} bytes")
        raise ValueError("compressed document is truncated")
    return data


class DistributionResponseDecoder:
    """
    Decode retDistDFeInt responses into DistributionResult values.

    Implements the ResponseDecoder port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(self, max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES) -> None:
        self._max_document_bytes = max_document_bytes

    def decode(self, raw: bytes) -> Result[DistributionResult]:
        """
        Returns Result[DistributionResult] on success, possibly with zero
        documents and a non-138 status that explains why.
        Returns Result.failure(DECODE_ERROR, ...) when the response as a
        whole cannot be parsed or carries no status.
        """
        return Result.from_computation(
            lambda: self._do_decode(raw),
            ErrorCode.DECODE_ERROR,
            "Failed to decode distribution response",
        )

    def _do_decode(self, raw: bytes) -> DistributionResult:
        if not raw or not raw.strip():
            raise DecodeError("Response body is empty")
        try:
            root = etree.fromstring(raw, parser=_PARSER)
        except etree.XMLSyntaxError as e:
            raise DecodeError(f"Response is not well-formed XML: {e}") from e

        status_code = _text(root, "cStat")
        status_reason = _text(root, "xMotivo")
        if not status_code:
            status_reason = self._fault_reason(root)

        documents: tuple[DocumentRecord, ...] = ()
        if status_code == DOCUMENTS_FOUND:
            documents = tuple(self._decode_batch(root))

        result = DistributionResult(
            status_code=status_code,
            status_reason=status_reason,
            last_nsu=_to_int(_text(root, "ultNSU"), "ultNSU"),
            max_nsu=_to_int(_text(root, "maxNSU"), "maxNSU"),
            documents=documents,
            environment=_optional_text(root, "tpAmb"),
            application_version=_optional_text(root, "verAplic"),
            responded_at=_optional_text(root, "dhResp"),
        )
        if result.last_nsu > result.max_nsu:
            log.warning("decoder.cursor_beyond_max", last_nsu=result.last_nsu, max_nsu=result.max_nsu)

        log.info(
            "decoder.complete",
            status=result.status_code,
            reason=result.status_reason,
            documents=len(result.documents),
            last_nsu=result.last_nsu,
            max_nsu=result.max_nsu,
            has_more=result.has_more,
        )
        return result

    def _fault_reason(self, root: etree._Element) -> str:
        """Reason text of a SOAP 1.1/1.2 Fault; DecodeError if there is none."""
        fault = _find(root, "Fault")
        if fault is None:
            raise DecodeError("Response carries neither cStat nor a SOAP Fault")
        reason = _text(fault, "Text") or _text(fault, "faultstring")
        log.warning("decoder.soap_fault", reason=reason)
        return reason

    def _decode_batch(self, root: etree._Element) -> list[DocumentRecord]:
        batch = _find(root, "loteDistDFeInt")
        if batch is None:
            return []

        records: list[DocumentRecord] = []
        for item in batch.iter("{*}docZip"):
            record = self._decode_item(item)
            if record is not None:
                records.append(record)
        return records

    def _decode_item(self, item: etree._Element) -> DocumentRecord | None:
        """Decode one docZip. Returns None, after logging, when it must be skipped."""
        nsu_text = item.get("NSU", "")
        schema = item.get("schema", "")

        mapper = _classify(schema)
        if mapper is None:
            log.warning("decoder.item_skipped", nsu=nsu_text, schema=schema, reason="unknown schema")
            return None

        try:
            inflated = _inflate(item.text or "", self._max_document_bytes)
            document = etree.fromstring(inflated, parser=_PARSER)
            xml = inflated.decode("utf-8")
            return mapper(_to_int(nsu_text, "NSU"), schema, document, xml)
        except (binascii.Error, zlib.error, etree.XMLSyntaxError, UnicodeDecodeError, ValueError) as e:
            log.error("decoder.item_failed", nsu=nsu_text, schema=schema, error=str(e))
            return None

"""
XML-DSig adapter — enveloped signature over the distDFeInt request element.

Adapter layer — implements the XmlSigner port using:
  - lxml: parsing and Canonical XML 1.0 (libxml2's C14N, no comments)
  - cryptography (PyCA): RSA PKCS#1 v1.5 signing with SHA-1

The profile is fixed by the remote validator and must not be changed:

  <Signature xmlns="http://www.w3.org/2000/09/xmldsig#">
    <SignedInfo>
      CanonicalizationMethod  c14n 1.0
      SignatureMethod         rsa-sha1
      Reference URI="#DistDFeInt"
        Transforms            enveloped-signature, c14n 1.0
        DigestMethod          sha1
        DigestValue           base64(sha1(c14n(distDFeInt)))
    </SignedInfo>
    <SignatureValue>base64(rsa_sha1(c14n(SignedInfo)))</SignatureValue>
    <KeyInfo><X509Data><X509Certificate>base64(DER)</X509Certificate></X509Data></KeyInfo>
  </Signature>

The reference digest is taken before the Signature element exists, which
is exactly what the enveloped-signature transform yields on the verifier's
side. Both SignedInfo and the target are canonicalized from a standalone
re-parse of their serialization: libxml2 C14N of a subtree that was built
in place emits spurious xmlns="" on descendants.
"""

from __future__ import annotations

import base64
import hashlib

import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from lxml import etree

from nfe_distribution.domain.errors import SignatureTargetNotFoundError, SigningError
from nfe_distribution.domain.models import Identity
from nfe_distribution.result import ErrorCode, Result

log = structlog.get_logger()

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
DSIG_NS = "http://www.w3.org/2000/09/xmldsig#"

TARGET_TAG = f"{{{NFE_NS}}}distDFeInt"
REFERENCE_ID = "DistDFeInt"

C14N_ALGORITHM = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ENVELOPED_ALGORITHM = f"{DSIG_NS}enveloped-signature"
SIGNATURE_ALGORITHM = f"{DSIG_NS}rsa-sha1"
DIGEST_ALGORITHM = f"{DSIG_NS}sha1"

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=False)


def canonicalize(element: etree._Element) -> bytes:
    """
    Canonical XML 1.0 (inclusive, without comments) of an element subtree.

    The subtree is serialized with its in-scope namespace declarations and
    parsed again as a document of its own before canonicalizing.
    """
    standalone = etree.fromstring(etree.tostring(element, with_tail=False), parser=_PARSER)
    return etree.tostring(standalone, method="c14n", exclusive=False, with_comments=False)


def _ds(tag: str) -> str:
    return f"{{{DSIG_NS}}}{tag}"


def _parse_fragment(fragment: str) -> etree._Element:
    try:
        return etree.fromstring(fragment.encode("utf-8"), parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise SignatureTargetNotFoundError("Request fragment is not well-formed XML") from e


def _find_target(root: etree._Element) -> etree._Element:
    if root.tag == TARGET_TAG:
        return root
    target = next(root.iter(TARGET_TAG), None)
    if target is None:
        raise SignatureTargetNotFoundError(f"Element {TARGET_TAG} not found in request")
    return target


def _build_signed_info(parent: etree._Element, digest_value: str) -> etree._Element:
    signed_info = etree.SubElement(parent, _ds("SignedInfo"))
    etree.SubElement(signed_info, _ds("CanonicalizationMethod"), Algorithm=C14N_ALGORITHM)
    etree.SubElement(signed_info, _ds("SignatureMethod"), Algorithm=SIGNATURE_ALGORITHM)

    reference = etree.SubElement(signed_info, _ds("Reference"), URI=f"#{REFERENCE_ID}")
    transforms = etree.SubElement(reference, _ds("Transforms"))
    etree.SubElement(transforms, _ds("Transform"), Algorithm=ENVELOPED_ALGORITHM)
    etree.SubElement(transforms, _ds("Transform"), Algorithm=C14N_ALGORITHM)
    etree.SubElement(reference, _ds("DigestMethod"), Algorithm=DIGEST_ALGORITHM)
    etree.SubElement(reference, _ds("DigestValue")).text = digest_value
    return signed_info


class EnvelopedSigner:
    """
    Sign the distDFeInt element with an enveloped RSA-SHA1 signature.

    Implements the XmlSigner port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def sign(self, fragment: str, identity: Identity) -> Result[str]:
        """
        Return the Signature block to be placed as the target's last child.

        Returns Result.failure(SIGNATURE_TARGET_NOT_FOUND, ...) for malformed
        input and Result.failure(SIGNING_ERROR, ...) for key failures.
        """
        return Result.from_computation(
            lambda: etree.tostring(self._sign_tree(fragment, identity)[1], encoding="unicode"),
            ErrorCode.SIGNING_ERROR,
            "Failed to sign request",
        )

    def sign_enveloped(self, fragment: str, identity: Identity) -> Result[str]:
        """Return the whole fragment, Id attribute set and Signature appended."""
        return Result.from_computation(
            lambda: etree.tostring(self._sign_tree(fragment, identity)[0], encoding="unicode"),
            ErrorCode.SIGNING_ERROR,
            "Failed to sign request",
        )

    def _sign_tree(
        self, fragment: str, identity: Identity
    ) -> tuple[etree._Element, etree._Element]:
        """
        Steps 1-7 of the enveloped signature. Returns (root, signature).

        May raise SignatureTargetNotFoundError or SigningError.
        """
        root = _parse_fragment(fragment)
        target = _find_target(root)
        target.set("Id", REFERENCE_ID)

        digest_value = base64.b64encode(hashlib.sha1(canonicalize(target)).digest()).decode("ascii")

        signature = etree.SubElement(target, _ds("Signature"), nsmap={None: DSIG_NS})
        signed_info = _build_signed_info(signature, digest_value)

        try:
            signature_bytes = identity.private_key.sign(
                canonicalize(signed_info),
                padding.PKCS1v15(),
                hashes.SHA1(),
            )
        except Exception as e:
            raise SigningError(f"RSA-SHA1 signing failed: {e}") from e

        etree.SubElement(signature, _ds("SignatureValue")).text = base64.b64encode(
            signature_bytes
        ).decode("ascii")
        key_info = etree.SubElement(signature, _ds("KeyInfo"))
        x509_data = etree.SubElement(key_info, _ds("X509Data"))
        etree.SubElement(x509_data, _ds("X509Certificate")).text = base64.b64encode(
            identity.certificate.der
        ).decode("ascii")

        log.debug("signer.signed", reference=REFERENCE_ID, digest=digest_value)
        return root, signature

"""
Android hardware key attestation certificate chain verification.

The device delivers the chain of the attested key as base64 of a comma
joined list of base64 DER certificates, leaf first and root last. A chain
is trusted when every certificate is within its validity window, each
certificate is issued and signed by the next one, the root is signed by a
pinned Google attestation root key, no certificate is listed as revoked and
at least one certificate carries the key attestation extension.
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from asn1crypto import core as asn1_core
from cryptography import x509
from cryptography.exceptions import InvalidSignature as _InvalidSignature
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from .errors import (
    DecodeError,
    ExpiredCertificate,
    InvalidChain,
    MissingAttestationExtension,
    RevokedCertificate,
    UntrustedRoot,
)
from .key_description import (
    CLASS_CONTEXT,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    KeyDescription,
    parse_single,
    read_tlvs,
)
from .revocation import RevocationListSource
from .trust import (
    KEY_ATTESTATION_EXTENSION_OID,
    PublicKey,
    default_trust_anchors,
    public_key_to_pem,
)

logger = logging.getLogger(__name__)

PEM_HEADER = "-----BEGIN CERTIFICATE-----"
PEM_FOOTER = "-----END CERTIFICATE-----"
TAG_OBJECT_IDENTIFIER = 6
TAG_EXTENSIONS = 3


@dataclass
class AttestationChain:
    """A chain that passed verification."""

    certificates: List[x509.Certificate]
    extension_index: int
    extension_value: bytes
    key_description: Optional[KeyDescription] = None
    leaf_public_key_pem: str = field(default="")

    @property
    def leaf(self) -> x509.Certificate:
        return self.certificates[0]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_pem(b64_der: str) -> bytes:
    body = "\n".join(b64_der[i:i + 64] for i in range(0, len(b64_der), 64))
    return f"{PEM_HEADER}\n{body}\n{PEM_FOOTER}\n".encode("ascii")


def decode_certificate_chain(chain_blob: str) -> List[x509.Certificate]:
    """Decode the outer base64 blob into certificates, leaf first."""
    if not chain_blob:
        raise DecodeError("Attestation chain is empty")
    try:
        joined = base64.b64decode(chain_blob).decode("ascii")
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Attestation chain is not valid base64: {e}")

    certificates = []
    for index, entry in enumerate(joined.split(",")):
        b64_der = "".join(entry.split())
        if not b64_der:
            continue
        try:
            base64.b64decode(b64_der, validate=True)
            certificates.append(x509.load_pem_x509_certificate(_to_pem(b64_der)))
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Certificate {index} could not be parsed: {e}")

    if not certificates:
        raise DecodeError("Attestation chain contains no certificates")
    return certificates


def verify_certificate_signature(public_key: PublicKey, certificate: x509.Certificate) -> None:
    """Check ``certificate``'s signature with ``public_key``.

    Raises cryptography's InvalidSignature, or ValueError/TypeError when the
    key type does not fit the signature algorithm.
    """
    signature = certificate.signature
    tbs = certificate.tbs_certificate_bytes
    if isinstance(public_key, rsa.RSAPublicKey):
        public_key.verify(
            signature, tbs,
            certificate.signature_algorithm_parameters,
            certificate.signature_hash_algorithm,
        )
    elif isinstance(public_key, ec.EllipticCurvePublicKey):
        public_key.verify(signature, tbs, ec.ECDSA(certificate.signature_hash_algorithm))
    elif isinstance(public_key, ed25519.Ed25519PublicKey):
        public_key.verify(signature, tbs)
    else:
        raise TypeError(f"Unsupported issuer key type: {type(public_key).__name__}")


def _signed_by(public_key: PublicKey, certificate: x509.Certificate) -> bool:
    try:
        verify_certificate_signature(public_key, certificate)
    except (_InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError):
        return False
    return True


def validate_issuance(certificates: Sequence[x509.Certificate],
                      trust_anchors: Sequence[PublicKey],
                      now: Optional[datetime] = None) -> None:
    """Validity windows, issuer linkage and the pinned root."""
    now = now or _utcnow()

    for index, cert in enumerate(certificates):
        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc
        if not (not_before < now < not_after):
            raise ExpiredCertificate(
                f"Certificate {index} ({cert.subject.rfc4514_string()}) is outside its "
                f"validity window {not_before.isoformat()} - {not_after.isoformat()}",
                index=index,
            )

    for index in range(len(certificates) - 1):
        subject, issuer = certificates[index], certificates[index + 1]
        if subject.issuer != issuer.subject:
            raise InvalidChain(
                f"Certificate {index} issuer '{subject.issuer.rfc4514_string()}' does not "
                f"match certificate {index + 1} subject '{issuer.subject.rfc4514_string()}'",
                index=index,
            )
        if not _signed_by(issuer.public_key(), subject):
            raise InvalidChain(
                f"Certificate {index} signature does not verify with certificate {index + 1}",
                index=index,
            )

    root = certificates[-1]
    if not any(_signed_by(anchor, root) for anchor in trust_anchors):
        raise UntrustedRoot(
            f"Root certificate ({root.subject.rfc4514_string()}) is not signed by a pinned "
            f"attestation root key"
        )


def check_revocation(certificates: Sequence[x509.Certificate],
                     revocation_source: RevocationListSource) -> None:
    """Fail when any certificate serial appears in the revocation list."""
    revocation_list = revocation_source.fetch()
    for index, cert in enumerate(certificates):
        status = revocation_list.lookup(cert.serial_number)
        if status is not None:
            raise RevokedCertificate(
                f"Certificate {index} serial {cert.serial_number:x} is {status.status or 'revoked'}"
                f" ({status.reason or 'no reason given'})",
                status=status,
                index=index,
            )


def extension_value(certificate_der: bytes, oid: str) -> Optional[bytes]:
    """Find an extension in the raw TBSCertificate and return its octets."""
    try:
        cert_items = read_tlvs(parse_single(certificate_der, TAG_SEQUENCE)[4])
        tbs_items = read_tlvs(cert_items[0][4])
        for item in tbs_items:
            if item[0] != CLASS_CONTEXT or item[2] != TAG_EXTENSIONS:
                continue
            for ext in read_tlvs(parse_single(item[4], TAG_SEQUENCE)[4]):
                fields = read_tlvs(ext[4])
                oid_info = fields[0]
                if oid_info[2] != TAG_OBJECT_IDENTIFIER:
                    raise ValueError("Extension missing OBJECT IDENTIFIER")
                dotted = asn1_core.ObjectIdentifier.load(oid_info[3] + oid_info[4]).dotted
                if dotted == oid:
                    value = fields[-1]
                    if value[2] != TAG_OCTET_STRING:
                        raise ValueError("Extension value is not an OCTET STRING")
                    return bytes(value[4])
    except (ValueError, IndexError) as e:
        raise DecodeError(f"Certificate extensions could not be parsed: {e}")
    return None


def find_key_attestation_extension(certificates: Sequence[x509.Certificate],
                                   oid: str = KEY_ATTESTATION_EXTENSION_OID) -> Tuple[int, bytes]:
    """Scan from the root toward the leaf. First certificate carrying ``oid`` wins."""
    for index in reversed(range(len(certificates))):
        der = certificates[index].public_bytes(serialization.Encoding.DER)
        value = extension_value(der, oid)
        if value is not None:
            return index, value
    raise MissingAttestationExtension(f"No certificate in the chain carries extension {oid}")


class CertificateChainVerifier:
    """
    Verifies Android hardware key attestation chains.

    Stateless between calls; one revocation fetch per verification.
    """

    def __init__(self, revocation_source: RevocationListSource,
                 trust_anchors: Optional[Sequence[PublicKey]] = None,
                 extension_oid: str = KEY_ATTESTATION_EXTENSION_OID,
                 clock: Callable[[], datetime] = _utcnow):
        self.revocation_source = revocation_source
        self.trust_anchors = list(trust_anchors) if trust_anchors is not None else default_trust_anchors()
        self.extension_oid = extension_oid
        self.clock = clock
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def verify_attestation_chain(self, chain_blob: str) -> AttestationChain:
        """
        Verify a chain blob end to end.

        Args:
            chain_blob: base64 of comma separated base64 DER certificates

        Returns:
            AttestationChain describing the trusted chain

        Raises:
            AttestationChainError subclass or DecodeError on failure
        """
        blob_hash = hashlib.sha256((chain_blob or "").encode("utf-8")).hexdigest()
        self.logger.info(f"Chain verification attempt - Blob hash: {blob_hash[:8]}...")

        certificates = decode_certificate_chain(chain_blob)
        validate_issuance(certificates, self.trust_anchors, self.clock())
        check_revocation(certificates, self.revocation_source)
        index, value = find_key_attestation_extension(certificates, self.extension_oid)

        key_description = None
        try:
            key_description = KeyDescription.from_der(value)
        except DecodeError as e:
            self.logger.warning(f"Key description in certificate {index} could not be parsed: {e.detail}")

        self.logger.info(
            f"Chain verified - Blob hash: {blob_hash[:8]}..., "
            f"Certificates: {len(certificates)}, Extension at: {index}"
        )
        return AttestationChain(
            certificates=certificates,
            extension_index=index,
            extension_value=value,
            key_description=key_description,
            leaf_public_key_pem=public_key_to_pem(certificates[0].public_key()),
        )

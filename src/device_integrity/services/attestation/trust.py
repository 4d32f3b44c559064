"""
Pinned trust anchors and identifiers for Android hardware key attestation.
"""

import logging
from typing import Iterable, List, Sequence, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from .errors import DecodeError

logger = logging.getLogger(__name__)

# Key description extension (KeyDescription SEQUENCE)
KEY_ATTESTATION_EXTENSION_OID = "1.3.6.1.4.1.11129.2.1.17"

# Google Hardware Attestation root public key.
# Shared by the Google hardware attestation root certificates.
GOOGLE_HARDWARE_ATTESTATION_ROOT_KEY_PEM = """-----BEGIN PUBLIC KEY-----
MIICIjANBgkqhkiG9w0BAQEFAAOCAg8AMIICCgKCAgEAr7bHgiuxpwHsK7Qui8xU
FmOr75gvMsd/dTEDDJdSSxtf6An7xyqpRR90PL2abxM1dEqlXnf2tqw1Ne4Xwl5j
lRfdnJLmN0pTy/4lj4/7tv0Sk3iiKkypnEUtR6WfMgH0QZfKHM1+di+y9TFRtv6y
//0rb+T+W8a9nsNL/ggjnar86461qO0rOs2cXjp3kOG1FEJ5MVmFmBGtnrKpa73X
pXyTqRxB/M0n1n/W9nGqC4FSYa04T6N5RIZGBN2z2MT5IKGbFlbC8UrW0DxW7AYI
mQQcHtGl/m00QLVWutHQoVJYnFPlXTcHYvASLu+RhhsbDmxMgJJ0mcDpvsC4PjvB
+TxywElgS70vE0XmLD+OJtvsBslHZvPBKCOdT0MS+tgSOIfga+z1Z1g7+DVagf7q
uvmag8jfPioyKvxnK/EgsTUVi2ghzq8wm27ud/mIM7AY2qEORR8Go3TVB4HzWQgp
Zrt3i5MIlCaY504LzSRiigHCzAPlHws+W0rB5N+er5/2pJKnfBSDiCiFAVtCLOZ7
gLiMm0jhO2B6tUXHI/+MRPjy02i59lINMRRev56GKtcd9qO/0kUJWdZTdA2XoS82
ixPvZtXQpUpuL12ab+9EaDK8Z4RHJYYfCT3Q5vNAXaiWQ+8PTWm2QgBR/bkwSWc+
NpUFgNPN9PvQi8WEg5UmAGMCAwEAAQ==
-----END PUBLIC KEY-----
"""

GOOGLE_ATTESTATION_STATUS_URL = "https://android.googleapis.com/attestation/status"

PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey]


def load_public_key(pem: Union[str, bytes]) -> PublicKey:
    """Load a PEM encoded SubjectPublicKeyInfo."""
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Invalid PEM public key: {e}")
    if not isinstance(key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)):
        raise DecodeError(f"Unsupported public key type: {type(key).__name__}")
    return key


def load_trust_anchors(pems: Iterable[Union[str, bytes]]) -> List[PublicKey]:
    """Load a list of pinned root public keys."""
    anchors = [load_public_key(pem) for pem in pems]
    logger.debug(f"Loaded {len(anchors)} attestation trust anchor(s)")
    return anchors


def default_trust_anchors() -> List[PublicKey]:
    return load_trust_anchors([GOOGLE_HARDWARE_ATTESTATION_ROOT_KEY_PEM])


def public_key_to_pem(key: PublicKey) -> str:
    return key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def split_pem_bundle(bundle: str) -> Sequence[str]:
    """Split a string holding several concatenated PEM public keys."""
    marker = "-----END PUBLIC KEY-----"
    parts = []
    for chunk in bundle.split(marker):
        chunk = chunk.strip()
        if chunk:
            parts.append(f"{chunk}\n{marker}\n")
    return parts

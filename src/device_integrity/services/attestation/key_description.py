"""
Parsing of the Android key attestation extension payload.

The extension value is a DER ``KeyDescription`` SEQUENCE::

    KeyDescription ::= SEQUENCE {
        attestationVersion         INTEGER,
        attestationSecurityLevel   SecurityLevel,
        keyMintVersion             INTEGER,
        keyMintSecurityLevel       SecurityLevel,
        attestationChallenge       OCTET STRING,
        uniqueId                   OCTET STRING,
        softwareEnforced           AuthorizationList,
        hardwareEnforced           AuthorizationList,
    }

Only parsing happens here. Policy (required security level, purposes,
challenge) is left to callers.
"""

import hmac
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from asn1crypto import parser as asn1_parser

from .errors import DecodeError

CLASS_UNIVERSAL = 0
CLASS_CONTEXT = 2

TAG_BOOLEAN = 1
TAG_INTEGER = 2
TAG_OCTET_STRING = 4
TAG_ENUMERATED = 10
TAG_SEQUENCE = 16
TAG_SET = 17

SECURITY_LEVELS = {
    0: "software",
    1: "trusted_environment",
    2: "strongbox",
}

VERIFIED_BOOT_STATES = {
    0: "verified",
    1: "self_signed",
    2: "unverified",
    3: "failed",
}

# AuthorizationList tag numbers
TAG_PURPOSE = 1
TAG_ALGORITHM = 2
TAG_KEY_SIZE = 3
TAG_DIGEST = 5
TAG_EC_CURVE = 10
TAG_CREATION_DATETIME = 701
TAG_ORIGIN = 702
TAG_ROOT_OF_TRUST = 704
TAG_OS_VERSION = 705
TAG_OS_PATCH_LEVEL = 706
TAG_ATTESTATION_APPLICATION_ID = 709
TAG_VENDOR_PATCH_LEVEL = 718
TAG_BOOT_PATCH_LEVEL = 719

_INTEGER_TAGS = {
    TAG_ALGORITHM: "algorithm",
    TAG_KEY_SIZE: "key_size",
    TAG_EC_CURVE: "ec_curve",
    TAG_CREATION_DATETIME: "creation_datetime",
    TAG_ORIGIN: "origin",
    TAG_OS_VERSION: "os_version",
    TAG_OS_PATCH_LEVEL: "os_patch_level",
    TAG_VENDOR_PATCH_LEVEL: "vendor_patch_level",
    TAG_BOOT_PATCH_LEVEL: "boot_patch_level",
}

_INTEGER_SET_TAGS = {
    TAG_PURPOSE: "purpose",
    TAG_DIGEST: "digest",
}

Tlv = Tuple[int, int, int, bytes, bytes, bytes]


def _tlv_length(info: Tlv) -> int:
    return len(info[3]) + len(info[4]) + len(info[5])


def read_tlvs(data: bytes) -> List[Tlv]:
    """Split concatenated DER elements into parsed TLV tuples."""
    items = []
    offset = 0
    while offset < len(data):
        info = asn1_parser.parse(data[offset:], strict=False)
        items.append(info)
        offset += _tlv_length(info)
    return items


def parse_single(data: bytes, tag: int, class_: int = CLASS_UNIVERSAL) -> Tlv:
    info = asn1_parser.parse(data, strict=True)
    if info[0] != class_ or info[2] != tag:
        raise ValueError(f"Expected tag {tag} (class {class_}), got {info[2]} (class {info[0]})")
    return info


def _expect(info: Tlv, tag: int, what: str) -> bytes:
    if info[0] != CLASS_UNIVERSAL or info[2] != tag:
        raise ValueError(f"{what}: unexpected ASN.1 tag {info[2]}")
    return info[4]


def _integer(info: Tlv, what: str, tag: int = TAG_INTEGER) -> int:
    contents = _expect(info, tag, what)
    if not contents:
        raise ValueError(f"{what}: empty integer")
    return int.from_bytes(contents, "big", signed=True)


@dataclass
class RootOfTrust:
    verified_boot_key: bytes
    device_locked: bool
    verified_boot_state: str
    verified_boot_hash: Optional[bytes] = None

    @classmethod
    def from_der(cls, data: bytes) -> "RootOfTrust":
        items = read_tlvs(parse_single(data, TAG_SEQUENCE)[4])
        if len(items) < 3:
            raise ValueError("RootOfTrust is truncated")
        boot_key = _expect(items[0], TAG_OCTET_STRING, "verifiedBootKey")
        locked = _expect(items[1], TAG_BOOLEAN, "deviceLocked")
        state = _integer(items[2], "verifiedBootState", TAG_ENUMERATED)
        boot_hash = None
        if len(items) > 3:
            boot_hash = _expect(items[3], TAG_OCTET_STRING, "verifiedBootHash")
        return cls(
            verified_boot_key=bytes(boot_key),
            device_locked=locked != b"\x00",
            verified_boot_state=VERIFIED_BOOT_STATES.get(state, str(state)),
            verified_boot_hash=bytes(boot_hash) if boot_hash is not None else None,
        )


@dataclass
class AuthorizationList:
    """Decoded subset of an AuthorizationList; every tag stays in ``raw``."""

    purpose: List[int] = field(default_factory=list)
    digest: List[int] = field(default_factory=list)
    algorithm: Optional[int] = None
    key_size: Optional[int] = None
    ec_curve: Optional[int] = None
    creation_datetime: Optional[int] = None
    origin: Optional[int] = None
    os_version: Optional[int] = None
    os_patch_level: Optional[int] = None
    vendor_patch_level: Optional[int] = None
    boot_patch_level: Optional[int] = None
    root_of_trust: Optional[RootOfTrust] = None
    attestation_application_id: Optional[bytes] = None
    raw: Dict[int, bytes] = field(default_factory=dict)

    @classmethod
    def from_der(cls, data: bytes) -> "AuthorizationList":
        auth = cls()
        for info in read_tlvs(parse_single(data, TAG_SEQUENCE)[4]):
            if info[0] != CLASS_CONTEXT:
                raise ValueError(f"AuthorizationList entry has class {info[0]}")
            tag, inner = info[2], bytes(info[4])
            auth.raw[tag] = inner
            if tag in _INTEGER_TAGS:
                value = _integer(asn1_parser.parse(inner), _INTEGER_TAGS[tag])
                setattr(auth, _INTEGER_TAGS[tag], value)
            elif tag in _INTEGER_SET_TAGS:
                members = read_tlvs(parse_single(inner, TAG_SET)[4])
                setattr(auth, _INTEGER_SET_TAGS[tag],
                        [_integer(m, _INTEGER_SET_TAGS[tag]) for m in members])
            elif tag == TAG_ROOT_OF_TRUST:
                auth.root_of_trust = RootOfTrust.from_der(inner)
            elif tag == TAG_ATTESTATION_APPLICATION_ID:
                auth.attestation_application_id = bytes(
                    parse_single(inner, TAG_OCTET_STRING)[4]
                )
        return auth

    def has_tag(self, tag: int) -> bool:
        return tag in self.raw


@dataclass
class KeyDescription:
    attestation_version: int
    attestation_security_level: str
    keymint_version: int
    keymint_security_level: str
    attestation_challenge: bytes
    unique_id: bytes
    software_enforced: AuthorizationList
    hardware_enforced: AuthorizationList

    @classmethod
    def from_der(cls, data: bytes) -> "KeyDescription":
        """Parse the DER extension value. Raises DecodeError when malformed."""
        try:
            items = read_tlvs(parse_single(data, TAG_SEQUENCE)[4])
            if len(items) < 8:
                raise ValueError(f"KeyDescription has {len(items)} fields, expected 8")
            attestation_level = _integer(items[1], "attestationSecurityLevel", TAG_ENUMERATED)
            keymint_level = _integer(items[3], "keyMintSecurityLevel", TAG_ENUMERATED)
            return cls(
                attestation_version=_integer(items[0], "attestationVersion"),
                attestation_security_level=SECURITY_LEVELS.get(attestation_level, str(attestation_level)),
                keymint_version=_integer(items[2], "keyMintVersion"),
                keymint_security_level=SECURITY_LEVELS.get(keymint_level, str(keymint_level)),
                attestation_challenge=bytes(_expect(items[4], TAG_OCTET_STRING, "attestationChallenge")),
                unique_id=bytes(_expect(items[5], TAG_OCTET_STRING, "uniqueId")),
                software_enforced=AuthorizationList.from_der(_reencode(items[6])),
                hardware_enforced=AuthorizationList.from_der(_reencode(items[7])),
            )
        except DecodeError:
            raise
        except (ValueError, TypeError, IndexError) as e:
            raise DecodeError(f"Malformed key description: {e}")

    @property
    def is_hardware_backed(self) -> bool:
        return self.attestation_security_level in ("trusted_environment", "strongbox")

    def challenge_matches(self, expected: bytes) -> bool:
        return hmac.compare_digest(self.attestation_challenge, expected)

    def summary(self) -> Dict[str, Any]:
        return {
            "attestation_version": self.attestation_version,
            "attestation_security_level": self.attestation_security_level,
            "keymint_version": self.keymint_version,
            "keymint_security_level": self.keymint_security_level,
            "hardware_backed": self.is_hardware_backed,
        }


def _reencode(info: Tlv) -> bytes:
    return bytes(info[3]) + bytes(info[4]) + bytes(info[5])

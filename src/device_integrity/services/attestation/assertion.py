"""
Verification of assertions produced by a previously attested hardware key.

An assertion is an ECDSA signature over
``SHA256(authenticatorData || SHA256(clientData))`` together with the
authenticator data::

    authenticatorData[0:32]   SHA256("<team id>.<bundle id>")  (RP ID hash)
    authenticatorData[32]     flags
    authenticatorData[33:37]  sign counter, unsigned 32-bit big endian

The counter must strictly increase between accepted assertions.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import struct
from dataclasses import dataclass
from enum import Enum

import cbor2
from cryptography.exceptions import InvalidSignature as _InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from .errors import (
    AppIdMismatch,
    DecodeError,
    InvalidSignature,
    MissingField,
    ReplayOrStaleCounter,
)
from .trust import load_public_key

logger = logging.getLogger(__name__)

RP_ID_HASH_LENGTH = 32
COUNTER_OFFSET = 33
AUTHENTICATOR_DATA_MIN_LENGTH = 37


class AssertionEncoding(Enum):
    """Transport encodings of an assertion."""

    # base64 of a CBOR map {"signature": bstr, "authenticatorData": bstr}
    CBOR = "cbor"
    # base64 of a JSON object {"signature": b64, "authenticatorData": b64}
    JSON = "json"


@dataclass(frozen=True)
class Assertion:
    signature: bytes
    authenticator_data: bytes


@dataclass(frozen=True)
class AuthenticatorData:
    rp_id_hash: bytes
    flags: int
    sign_count: int

    @classmethod
    def parse(cls, data: bytes) -> "AuthenticatorData":
        if len(data) < AUTHENTICATOR_DATA_MIN_LENGTH:
            raise DecodeError(
                f"Authenticator data is {len(data)} bytes, expected at least "
                f"{AUTHENTICATOR_DATA_MIN_LENGTH}"
            )
        (sign_count,) = struct.unpack(">I", data[COUNTER_OFFSET:AUTHENTICATOR_DATA_MIN_LENGTH])
        return cls(
            rp_id_hash=bytes(data[:RP_ID_HASH_LENGTH]),
            flags=data[RP_ID_HASH_LENGTH],
            sign_count=sign_count,
        )


@dataclass
class AssertionInput:
    signature: bytes
    authenticator_data: bytes
    payload: bytes
    public_key: str
    bundle_identifier: str
    team_identifier: str
    stored_sign_count: int = 0


@dataclass(frozen=True)
class AssertionResult:
    sign_count: int


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def app_id_hash(team_identifier: str, bundle_identifier: str) -> bytes:
    return sha256(f"{team_identifier}.{bundle_identifier}".encode("utf-8"))


def assertion_nonce(authenticator_data: bytes, payload: bytes) -> bytes:
    return sha256(authenticator_data + sha256(payload))


def _b64(value, name: str) -> bytes:
    if not isinstance(value, str):
        raise DecodeError(f"Assertion field {name} must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Assertion field {name} is not valid base64: {e}")


def decode_assertion(encoded: str, encoding: AssertionEncoding = AssertionEncoding.CBOR) -> Assertion:
    """Decode a transport assertion into raw signature and authenticator data."""
    if not encoded:
        raise MissingField("assertion")
    raw = _b64(encoded, "assertion")

    if encoding is AssertionEncoding.CBOR:
        try:
            decoded = cbor2.loads(raw)
        except (cbor2.CBORDecodeError, ValueError) as e:
            raise DecodeError(f"Assertion is not valid CBOR: {e}")
        if not isinstance(decoded, dict):
            raise DecodeError("Assertion CBOR is not a map")
        signature = decoded.get("signature")
        authenticator_data = decoded.get("authenticatorData")
        if not isinstance(signature, bytes) or not isinstance(authenticator_data, bytes):
            raise DecodeError("Assertion CBOR lacks signature/authenticatorData byte strings")
        return Assertion(signature=signature, authenticator_data=authenticator_data)

    if encoding is AssertionEncoding.JSON:
        try:
            decoded = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise DecodeError(f"Assertion is not valid JSON: {e}")
        if not isinstance(decoded, dict):
            raise DecodeError("Assertion JSON is not an object")
        return Assertion(
            signature=_b64(decoded.get("signature"), "signature"),
            authenticator_data=_b64(decoded.get("authenticatorData"), "authenticatorData"),
        )

    raise DecodeError(f"Unsupported assertion encoding: {encoding}")


class AssertionVerifier:
    """
    Checks an assertion against a registered public key and counter.

    Pure with respect to its inputs. Persisting the returned sign count
    atomically is the caller's job.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def verify_assertion(self, params: AssertionInput) -> AssertionResult:
        """
        Verify one assertion.

        Returns:
            AssertionResult carrying the new sign count

        Raises:
            MissingField, DecodeError, InvalidSignature, AppIdMismatch,
            ReplayOrStaleCounter
        """
        self._check_required(params)

        nonce = assertion_nonce(params.authenticator_data, params.payload)

        public_key = load_public_key(params.public_key)
        if not isinstance(public_key, ec.EllipticCurvePublicKey):
            raise DecodeError("Assertion public key must be an EC key")
        try:
            public_key.verify(params.signature, nonce, ec.ECDSA(hashes.SHA256()))
        except _InvalidSignature:
            raise InvalidSignature("Assertion signature does not verify")

        expected_rp_id_hash = app_id_hash(params.team_identifier, params.bundle_identifier)
        if not hmac.compare_digest(expected_rp_id_hash, params.authenticator_data[:RP_ID_HASH_LENGTH]):
            raise AppIdMismatch(
                f"RP ID hash does not match {params.team_identifier}.{params.bundle_identifier}"
            )

        authenticator_data = AuthenticatorData.parse(params.authenticator_data)
        if authenticator_data.sign_count <= params.stored_sign_count:
            self.logger.warning(
                f"Possible replay - assertion counter {authenticator_data.sign_count} "
                f"not above stored counter {params.stored_sign_count}"
            )
            raise ReplayOrStaleCounter(
                f"Sign count {authenticator_data.sign_count} is not greater than "
                f"{params.stored_sign_count}"
            )

        return AssertionResult(sign_count=authenticator_data.sign_count)

    @staticmethod
    def _check_required(params: AssertionInput) -> None:
        required = (
            ("bundleIdentifier", params.bundle_identifier),
            ("teamIdentifier", params.team_identifier),
            ("signature", params.signature),
            ("authenticatorData", params.authenticator_data),
            ("payload", params.payload),
            ("publicKey", params.public_key),
        )
        for name, value in required:
            if not value:
                raise MissingField(name)


def verify_assertion(params: AssertionInput) -> AssertionResult:
    return AssertionVerifier().verify_assertion(params)

"""
Error taxonomy for hardware attestation and assertion verification.

Every failure carries a ``kind`` discriminator and a human readable
``detail`` so callers can branch on the kind without parsing messages.
"""

from typing import Any, Dict, Optional


class IntegrityError(Exception):
    """Base class for all verification failures."""

    kind = "IntegrityError"
    retryable = False

    def __init__(self, detail: str = "", **context: Any):
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind
        self.context: Dict[str, Any] = context


class DecodeError(IntegrityError):
    """Malformed base64, DER, PEM, CBOR or JSON input."""

    kind = "DecodeError"


# Certificate chain failures

class AttestationChainError(IntegrityError):
    """Base class for key attestation chain failures."""

    kind = "AttestationChainError"


class ExpiredCertificate(AttestationChainError):
    kind = "ExpiredCertificate"


class InvalidChain(AttestationChainError):
    kind = "InvalidChain"


class UntrustedRoot(AttestationChainError):
    kind = "UntrustedRoot"


class RevokedCertificate(AttestationChainError):
    kind = "RevokedCertificate"

    def __init__(self, detail: str = "", status: Optional[Any] = None, **context: Any):
        super().__init__(detail, **context)
        self.status = status


class MissingAttestationExtension(AttestationChainError):
    kind = "MissingAttestationExtension"


class RevocationFetchError(AttestationChainError):
    """The revocation list could not be fetched. Safe to retry later."""

    kind = "RevocationFetchError"
    retryable = True


# Assertion failures

class AssertionVerificationError(IntegrityError):
    """Base class for assertion failures."""

    kind = "AssertionVerificationError"


class MissingField(AssertionVerificationError):
    kind = "MissingField"

    def __init__(self, field: str):
        super().__init__(f"{field} is required", field=field)
        self.field = field


class InvalidSignature(AssertionVerificationError):
    kind = "InvalidSignature"


class AppIdMismatch(AssertionVerificationError):
    kind = "AppIdMismatch"


class ReplayOrStaleCounter(AssertionVerificationError):
    """The counter did not advance: a likely replayed assertion."""

    kind = "ReplayOrStaleCounter"


# Registry

class RecordNotFound(IntegrityError):
    kind = "RecordNotFound"

    def __init__(self, key_id: str):
        super().__init__(f"No attestation record for key {key_id}", key_id=key_id)
        self.key_id = key_id


class KeyAlreadyRegistered(IntegrityError):
    """A different public key is already stored under this key tag."""

    kind = "KeyAlreadyRegistered"

    def __init__(self, key_id: str):
        super().__init__(f"Key {key_id} is already registered with another public key", key_id=key_id)
        self.key_id = key_id


class ChallengeMismatch(IntegrityError):
    """The challenge is unknown, expired, already used or does not match."""

    kind = "ChallengeMismatch"


# Play Integrity verdicts

class IntegrityVerdictError(IntegrityError):
    """Google decoded the token but the verdict is not acceptable."""

    kind = "IntegrityVerdictError"


class DeviceIntegrityFailed(IntegrityVerdictError):
    kind = "DeviceIntegrityFailed"


class AppIntegrityFailed(IntegrityVerdictError):
    kind = "AppIntegrityFailed"


class ConfigurationError(IntegrityError):
    """Required settings or credentials are missing or unusable."""

    kind = "ConfigurationError"
    retryable = True


class UpstreamError(IntegrityError):
    """A Google API call failed. Safe to retry later."""

    kind = "UpstreamError"
    retryable = True

"""
Hardware Attestation Verification Package

This package verifies that requests come from genuine app instances running
on genuine devices with hardware-backed keys.

Supported checks:
- Android: key attestation certificate chains and Play Integrity tokens
- iOS and Android: hardware key assertions with a monotonic counter

Features:
- Trust anchors pinned to the Google hardware attestation root
- Revocation list fetching with retries and optional TTL caching
- One-time challenges with expiry
- Per-key counter ratchet that rejects replayed assertions
"""

from .assertion import (
    Assertion,
    AssertionEncoding,
    AssertionInput,
    AssertionResult,
    AssertionVerifier,
    AuthenticatorData,
    decode_assertion,
    verify_assertion,
)
from .base import AttestationResult, AttestationResultStatus, AttestationValidator
from .cache import CachedRevocationListSource, ChallengeStore
from .certificate_chain import AttestationChain, CertificateChainVerifier
from .config import AttestationConfig
from .errors import (
    AppIdMismatch,
    AppIntegrityFailed,
    AssertionVerificationError,
    AttestationChainError,
    ChallengeMismatch,
    ConfigurationError,
    DecodeError,
    DeviceIntegrityFailed,
    ExpiredCertificate,
    IntegrityError,
    IntegrityVerdictError,
    InvalidChain,
    InvalidSignature,
    MissingAttestationExtension,
    MissingField,
    KeyAlreadyRegistered,
    RecordNotFound,
    ReplayOrStaleCounter,
    RevocationFetchError,
    RevokedCertificate,
    UntrustedRoot,
    UpstreamError,
)
from .key_description import AuthorizationList, KeyDescription, RootOfTrust
from .registry import AttestationRecord, AttestationRegistry
from .revocation import (
    HttpRevocationListSource,
    RevocationList,
    RevocationListSource,
    RevocationStatus,
    StaticRevocationListSource,
)
from .service import IntegrityService

# Platform-specific validators
from .android_playintegrity import PlayIntegrityValidator

__all__ = [
    # Verifiers
    "CertificateChainVerifier",
    "AttestationChain",
    "AssertionVerifier",
    "AssertionInput",
    "AssertionResult",
    "Assertion",
    "AssertionEncoding",
    "AuthenticatorData",
    "decode_assertion",
    "verify_assertion",
    "KeyDescription",
    "AuthorizationList",
    "RootOfTrust",

    # Registry and service
    "AttestationRecord",
    "AttestationRegistry",
    "IntegrityService",
    "AttestationConfig",
    "AttestationResult",
    "AttestationResultStatus",
    "AttestationValidator",
    "PlayIntegrityValidator",

    # Revocation
    "RevocationStatus",
    "RevocationList",
    "RevocationListSource",
    "StaticRevocationListSource",
    "HttpRevocationListSource",
    "CachedRevocationListSource",
    "ChallengeStore",

    # Errors
    "IntegrityError",
    "DecodeError",
    "AttestationChainError",
    "ExpiredCertificate",
    "InvalidChain",
    "UntrustedRoot",
    "RevokedCertificate",
    "MissingAttestationExtension",
    "RevocationFetchError",
    "AssertionVerificationError",
    "MissingField",
    "InvalidSignature",
    "AppIdMismatch",
    "ReplayOrStaleCounter",
    "RecordNotFound",
    "KeyAlreadyRegistered",
    "ChallengeMismatch",
    "IntegrityVerdictError",
    "DeviceIntegrityFailed",
    "AppIntegrityFailed",
    "ConfigurationError",
    "UpstreamError",
]

"""
Attestation service facade.

Wires configuration, the chain and assertion verifiers, the registry and the
Play Integrity validator together, and turns verification failures into
AttestationResult values with metrics, the way the HTTP layer consumes them.
"""

import hashlib
import logging
import threading
from collections import defaultdict
from typing import Optional, Dict, Any

from .android_playintegrity import PlayIntegrityValidator
from .assertion import (
    AssertionEncoding,
    AssertionInput,
    AssertionVerifier,
    decode_assertion,
)
from .base import AttestationResult, AttestationResultStatus
from .cache import CachedRevocationListSource, ChallengeStore
from .certificate_chain import CertificateChainVerifier
from .config import AttestationConfig
from .errors import ChallengeMismatch, IntegrityError, ReplayOrStaleCounter
from .registry import AttestationRecord, AttestationRegistry
from .revocation import HttpRevocationListSource, RevocationListSource
from .trust import load_public_key, load_trust_anchors

logger = logging.getLogger(__name__)


def build_revocation_source(config: AttestationConfig) -> RevocationListSource:
    source = HttpRevocationListSource(
        url=config.crl_url,
        timeout=config.crl_timeout,
        retries=config.crl_retries,
    )
    if config.crl_cache_ttl > 0:
        return CachedRevocationListSource(source, ttl=config.crl_cache_ttl)
    return source


class IntegrityService:
    """
    Entry point for attestation and assertion verification.

    Handles challenge issuance, Android key attestation registration,
    assertion verification with the counter ratchet, Play Integrity token
    checks and metrics collection.
    """

    def __init__(self, config: AttestationConfig,
                 registry: Optional[AttestationRegistry] = None,
                 chain_verifier: Optional[CertificateChainVerifier] = None,
                 revocation_source: Optional[RevocationListSource] = None,
                 play_integrity: Optional[PlayIntegrityValidator] = None):
        self.config = config
        self.registry = registry if registry is not None else AttestationRegistry()
        self.challenges = ChallengeStore(maxsize=config.challenge_cache_size, ttl=config.challenge_ttl)
        self.chain_verifier = chain_verifier or CertificateChainVerifier(
            revocation_source=revocation_source or build_revocation_source(config),
            trust_anchors=load_trust_anchors(config.trust_anchor_pems()),
            extension_oid=config.extension_oid,
        )
        self.assertion_verifier = AssertionVerifier()
        self.play_integrity = play_integrity or PlayIntegrityValidator(config)

        self._metrics_lock = threading.Lock()
        self._metrics = self._empty_metrics()

        logger.info(f"Integrity service initialized - "
                    f"Trust anchors: {len(self.chain_verifier.trust_anchors)}, "
                    f"Challenge TTL: {config.challenge_ttl}s")

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            "total_requests": 0,
            "valid": 0,
            "invalid": 0,
            "errors": 0,
            "replays": 0,
            "error_kinds": defaultdict(int),
            "validator_breakdown": defaultdict(int),
        }

    def issue_challenge(self) -> str:
        """Random one-time challenge for the next attestation or assertion."""
        return self.challenges.issue()

    def _consume_challenge(self, challenge: Optional[str]) -> None:
        if not self.challenges.consume(challenge or ""):
            raise ChallengeMismatch("Challenge is unknown, expired or already used")

    def register_android_key(self, key_id: str, chain_blob: str, public_key: str,
                             challenge: Optional[str] = None) -> AttestationResult:
        """
        Verify an Android key attestation chain and store the device key.

        The device key arrives next to the chain. When a challenge is given it
        must be one this service issued, and the attested challenge inside the
        key description must match it.
        """
        metadata: Dict[str, Any] = {}
        try:
            if challenge is not None:
                self._consume_challenge(challenge)
            load_public_key(public_key)
            chain = self.chain_verifier.verify_attestation_chain(chain_blob)
            if chain.key_description is not None:
                metadata["key_description"] = chain.key_description.summary()
            if challenge is not None:
                if chain.key_description is None:
                    raise ChallengeMismatch("Attested challenge could not be read from the key description")
                if not chain.key_description.challenge_matches(challenge.encode("utf-8")):
                    raise ChallengeMismatch("Attested challenge does not match the issued challenge")
            self.registry.register(key_id, AttestationRecord(key_id=key_id, public_key=public_key,
                                                             sign_count=0, platform="android"))
            result = AttestationResult(
                status=AttestationResultStatus.VALID,
                device_id=key_id,
                platform="android",
                validator_type="keyattestation",
                metadata={**metadata, "certificates": len(chain.certificates),
                          "extension_index": chain.extension_index},
            )
        except IntegrityError as e:
            result = AttestationResult.from_error(e, key_id, "android", "keyattestation", metadata or None)
        return self._record(result)

    def register_key(self, key_id: str, public_key: str, platform: str = "ios") -> AttestationResult:
        """Store a key whose attestation was verified elsewhere."""
        try:
            load_public_key(public_key)
            self.registry.register(key_id, AttestationRecord(key_id=key_id, public_key=public_key,
                                                             sign_count=0, platform=platform))
            result = AttestationResult(status=AttestationResultStatus.VALID, device_id=key_id,
                                       platform=platform, validator_type="registration")
        except IntegrityError as e:
            result = AttestationResult.from_error(e, key_id, platform, "registration")
        return self._record(result)

    def verify_assertion(self, key_id: str, assertion: str, payload: bytes,
                         encoding: AssertionEncoding = AssertionEncoding.CBOR,
                         challenge: Optional[str] = None) -> AttestationResult:
        """
        Verify an assertion for a registered key and advance its counter.

        On success ``metadata["sign_count"]`` holds the new counter.
        """
        platform = None
        try:
            if challenge is not None:
                self._consume_challenge(challenge)
            decoded = decode_assertion(assertion, encoding)

            def check(record: AttestationRecord) -> int:
                nonlocal platform
                platform = record.platform
                outcome = self.assertion_verifier.verify_assertion(AssertionInput(
                    signature=decoded.signature,
                    authenticator_data=decoded.authenticator_data,
                    payload=payload,
                    public_key=record.public_key,
                    bundle_identifier=self.config.bundle_identifier or "",
                    team_identifier=self.config.team_identifier or "",
                    stored_sign_count=record.sign_count,
                ))
                return outcome.sign_count

            record = self.registry.advance(key_id, check)
            result = AttestationResult(
                status=AttestationResultStatus.VALID,
                device_id=key_id,
                platform=platform,
                validator_type="assertion",
                metadata={"sign_count": record.sign_count},
            )
        except ReplayOrStaleCounter as e:
            with self._metrics_lock:
                self._metrics["replays"] += 1
            logger.warning(f"Possible replay attack - Key: {key_id}, Detail: {e.detail}")
            result = AttestationResult.from_error(e, key_id, platform, "assertion")
        except IntegrityError as e:
            result = AttestationResult.from_error(e, key_id, platform, "assertion")
        return self._record(result)

    def verify_integrity_token(self, token: str, request_hash: Optional[str] = None,
                               device_id: Optional[str] = None) -> AttestationResult:
        metadata = {"request_hash": request_hash} if request_hash else None
        return self._record(self.play_integrity.validate(token, device_id, metadata))

    def _record(self, result: AttestationResult) -> AttestationResult:
        with self._metrics_lock:
            self._metrics["total_requests"] += 1
            if result.is_valid:
                self._metrics["valid"] += 1
            elif result.is_invalid:
                self._metrics["invalid"] += 1
            else:
                self._metrics["errors"] += 1
            if result.error_kind:
                self._metrics["error_kinds"][result.error_kind] += 1
            if result.validator_type:
                self._metrics["validator_breakdown"][result.validator_type] += 1

        token = hashlib.sha256((result.device_id or "").encode("utf-8")).hexdigest()
        logger.info(
            f"Verification result - Status: {result.status.value}, "
            f"Validator: {result.validator_type}, "
            f"Key hash: {token[:8]}..., "
            f"Error: {result.error_kind or 'none'}"
        )
        return result

    def get_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            metrics = {
                "total_requests": self._metrics["total_requests"],
                "valid": self._metrics["valid"],
                "invalid": self._metrics["invalid"],
                "errors": self._metrics["errors"],
                "replays": self._metrics["replays"],
                "error_kinds": dict(self._metrics["error_kinds"]),
                "validator_breakdown": dict(self._metrics["validator_breakdown"]),
                "registered_keys": len(self.registry),
            }
        source = self.chain_verifier.revocation_source
        if isinstance(source, CachedRevocationListSource):
            metrics["revocation_cache"] = source.get_stats()
        return metrics

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self._metrics = self._empty_metrics()
        logger.info("Integrity service metrics reset")

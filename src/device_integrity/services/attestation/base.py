"""
Verification result type and the base class for token validators.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any

from .config import AttestationConfig
from .errors import IntegrityError, MissingField

logger = logging.getLogger(__name__)


class AttestationResultStatus(Enum):
    """Outcome class: accepted, rejected, or could not be decided."""
    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"


@dataclass
class AttestationResult:
    """Outcome of one verification call, as reported to the HTTP layer."""

    status: AttestationResultStatus
    device_id: Optional[str] = None
    platform: Optional[str] = None
    validator_type: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    validated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.validated_at is None:
            self.validated_at = datetime.now(timezone.utc)

    @classmethod
    def from_error(cls, error: IntegrityError, device_id: Optional[str] = None,
                   platform: Optional[str] = None, validator_type: Optional[str] = None,
                   metadata: Optional[Dict[str, Any]] = None) -> "AttestationResult":
        """Retryable failures become ERROR, every other failure INVALID."""
        return cls(
            status=AttestationResultStatus.ERROR if error.retryable else AttestationResultStatus.INVALID,
            device_id=device_id,
            platform=platform,
            validator_type=validator_type,
            error_kind=error.kind,
            error_message=error.detail,
            metadata=metadata,
        )

    @property
    def is_valid(self) -> bool:
        return self.status == AttestationResultStatus.VALID

    @property
    def is_invalid(self) -> bool:
        return self.status == AttestationResultStatus.INVALID

    @property
    def is_error(self) -> bool:
        return self.status == AttestationResultStatus.ERROR

    @property
    def retryable(self) -> bool:
        return self.is_error


class AttestationValidator(ABC):
    """
    Base class for validators that check an opaque platform token.

    Subclasses implement ``_check`` and raise IntegrityError subclasses on
    failure; ``validate`` turns the outcome into an AttestationResult and
    writes the audit log lines.
    """

    def __init__(self, config: AttestationConfig):
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def get_validator_type(self) -> str:
        """Validator type identifier, e.g. ``playintegrity``."""

    @abstractmethod
    def get_platform(self) -> str:
        """Platform this validator supports."""

    @abstractmethod
    def _check(self, token: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check one token.

        Args:
            token: Non-empty token to check
            metadata: Caller metadata (never None)

        Returns:
            Metadata to attach to the valid result

        Raises:
            IntegrityError subclass when the token is rejected
        """

    def validate(self, token: str, device_id: Optional[str] = None,
                 metadata: Optional[Dict[str, Any]] = None) -> AttestationResult:
        """
        Check a platform token and report the outcome.

        Never raises for a rejected token: the failure kind and detail are
        carried on the returned result, together with any error context.
        """
        metadata = dict(metadata or {})
        fingerprint = self._fingerprint(token or "")
        self.logger.info(f"Checking {self.get_validator_type()} token {fingerprint} for device {device_id or '-'}")

        try:
            if not token:
                raise MissingField("token")
            checked = self._check(token, metadata)
            result = AttestationResult(
                status=AttestationResultStatus.VALID,
                device_id=device_id,
                platform=self.get_platform(),
                validator_type=self.get_validator_type(),
                metadata={**metadata, **checked},
            )
        except IntegrityError as e:
            result = AttestationResult.from_error(
                e, device_id, self.get_platform(), self.get_validator_type(),
                {**metadata, **e.context} or None,
            )

        self.logger.info(
            f"Token {fingerprint} -> {result.status.value}"
            + (f" ({result.error_kind})" if result.error_kind else "")
        )
        return result

    @staticmethod
    def _fingerprint(token: str) -> str:
        """Short SHA-256 prefix; raw tokens are never logged."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]

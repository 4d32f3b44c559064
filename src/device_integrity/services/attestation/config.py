"""
Configuration management for device attestation verification.
"""

import json
import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .trust import (
    GOOGLE_ATTESTATION_STATUS_URL,
    GOOGLE_HARDWARE_ATTESTATION_ROOT_KEY_PEM,
    KEY_ATTESTATION_EXTENSION_OID,
    split_pem_bundle,
)

logger = logging.getLogger(__name__)


def _env(name: str, *env_names: str):
    return AliasChoices(name, *env_names)


class AttestationConfig(BaseSettings):
    """
    Configuration for attestation verification.

    Loads from environment variables with defaults suitable for development.
    """

    model_config = SettingsConfigDict(
        env_file=None,  # Don't use .env files in production
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Stub mode
    stub_mode: bool = Field(default=False, validation_alias=_env("stub_mode", "ATTESTATION_STUB_MODE"))
    stub_allow_emulator: bool = Field(
        default=False, validation_alias=_env("stub_allow_emulator", "ATTESTATION_STUB_ALLOW_EMULATOR")
    )

    # App identity (iOS App ID = "<team>.<bundle>")
    bundle_identifier: Optional[str] = Field(default=None, validation_alias=_env("bundle_identifier", "BUNDLE_IDENTIFIER"))
    team_identifier: Optional[str] = Field(default=None, validation_alias=_env("team_identifier", "TEAM_IDENTIFIER"))

    # Android Play Integrity configuration
    android_package_name: Optional[str] = Field(
        default=None, validation_alias=_env("android_package_name", "ANDROID_BUNDLE_IDENTIFIER", "ANDROID_PACKAGE_NAME")
    )
    google_application_credentials: Optional[str] = Field(
        default=None, validation_alias=_env("google_application_credentials", "GOOGLE_APPLICATION_CREDENTIALS")
    )

    # Key attestation trust configuration
    root_public_keys: Optional[str] = Field(
        default=None, validation_alias=_env("root_public_keys", "ATTESTATION_ROOT_PUBLIC_KEYS")
    )
    include_google_root: bool = Field(
        default=True, validation_alias=_env("include_google_root", "ATTESTATION_INCLUDE_GOOGLE_ROOT")
    )
    extension_oid: str = Field(
        default=KEY_ATTESTATION_EXTENSION_OID, validation_alias=_env("extension_oid", "ATTESTATION_EXTENSION_OID")
    )

    # Revocation list configuration
    crl_url: str = Field(default=GOOGLE_ATTESTATION_STATUS_URL, validation_alias=_env("crl_url", "ATTESTATION_CRL_URL"))
    crl_timeout: float = Field(default=10.0, validation_alias=_env("crl_timeout", "ATTESTATION_CRL_TIMEOUT"))
    crl_retries: int = Field(default=2, validation_alias=_env("crl_retries", "ATTESTATION_CRL_RETRIES"))
    crl_cache_ttl: int = Field(default=0, validation_alias=_env("crl_cache_ttl", "ATTESTATION_CRL_CACHE_TTL"))  # 0 = no cache

    # Challenge configuration
    challenge_ttl: int = Field(default=300, validation_alias=_env("challenge_ttl", "ATTESTATION_CHALLENGE_TTL"))
    challenge_cache_size: int = Field(
        default=10000, validation_alias=_env("challenge_cache_size", "ATTESTATION_CHALLENGE_CACHE_SIZE")
    )

    # API timeout configuration
    api_timeout: int = Field(default=30, validation_alias=_env("api_timeout", "ATTESTATION_API_TIMEOUT"))

    @field_validator("stub_mode")
    @classmethod
    def block_stub_mode_in_production(cls, v: bool) -> bool:
        """Stub mode must never reach a production deployment"""
        environment = os.getenv("ENVIRONMENT", "development")
        if environment == "production" and v:
            raise ValueError(
                "ATTESTATION_STUB_MODE=true is not allowed in production. "
                "Set ATTESTATION_STUB_MODE=false in environment."
            )
        return v

    @field_validator("crl_retries", "crl_cache_ttl", "challenge_ttl")
    @classmethod
    def non_negative(cls, v: int, info) -> int:
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    def trust_anchor_pems(self) -> List[str]:
        """PEM root keys the chain verifier pins."""
        pems = []
        if self.include_google_root:
            pems.append(GOOGLE_HARDWARE_ATTESTATION_ROOT_KEY_PEM)
        if self.root_public_keys:
            pems.extend(split_pem_bundle(self.root_public_keys))
        return pems

    def load_google_credentials(self) -> Optional[Dict[str, Any]]:
        """
        Load the service account credential.

        GOOGLE_APPLICATION_CREDENTIALS may hold the JSON document itself or a
        path to it.
        """
        value = self.google_application_credentials
        if not value:
            return None
        text = value.strip()
        if not text.startswith("{"):
            try:
                text = Path(text).read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"Cannot read Google credentials file {text}: {e.strerror}")
        return json.loads(text)

    def get_android_config(self) -> dict:
        """Get Android-specific configuration."""
        return {
            "package_name": self.android_package_name,
            "credentials": self.google_application_credentials,
            "stub_mode": self.stub_mode,
            "stub_allow_emulator": self.stub_allow_emulator
        }

    def validate_config(self) -> list[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of configuration issues (empty if valid)
        """
        issues = []

        if not self.bundle_identifier:
            issues.append("BUNDLE_IDENTIFIER is required for assertion verification")
        if not self.team_identifier:
            issues.append("TEAM_IDENTIFIER is required for assertion verification")
        if not self.trust_anchor_pems():
            issues.append("No attestation root keys configured")

        if self.stub_mode:
            logger.info("Attestation running in stub mode - Play Integrity credentials not checked")
            return issues

        if not self.android_package_name:
            issues.append("ANDROID_BUNDLE_IDENTIFIER is required for Play Integrity")
        if not self.google_application_credentials:
            issues.append("GOOGLE_APPLICATION_CREDENTIALS is required for Play Integrity")

        return issues

    def log_config_summary(self):
        """Log configuration summary for debugging."""
        logger.info(f"Attestation config - Stub mode: {self.stub_mode}, "
                    f"Trust anchors: {len(self.trust_anchor_pems())}, "
                    f"CRL URL: {self.crl_url}, "
                    f"CRL timeout: {self.crl_timeout}s, "
                    f"CRL cache TTL: {self.crl_cache_ttl}s")
        logger.info(f"App config - Team ID: {self.team_identifier}, "
                    f"Bundle ID: {self.bundle_identifier}, "
                    f"Android package: {self.android_package_name}, "
                    f"Google credentials: {'configured' if self.google_application_credentials else 'not configured'}")

"""
Android Play Integrity token verification.

Integrity tokens are decrypted and verified by Google, not locally: the
backend posts the token to the Play Integrity API with a service account
access token and inspects the returned verdict. The verdict itself should
never be passed back to the client.
"""

import hmac
import logging
import threading
import time
from typing import Optional, Dict, Any
import httpx
import jwt

from .base import AttestationValidator
from .config import AttestationConfig
from .errors import (
    AppIdMismatch,
    AppIntegrityFailed,
    ChallengeMismatch,
    ConfigurationError,
    DecodeError,
    DeviceIntegrityFailed,
    UpstreamError,
)

logger = logging.getLogger(__name__)

PLAY_INTEGRITY_SCOPE = "https://www.googleapis.com/auth/playintegrity"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME = 3600
TOKEN_REFRESH_MARGIN = 60

# metadata key -> requestDetails field
REQUEST_BINDINGS = {
    "request_hash": "requestHash",  # standard requests
    "nonce": "nonce",               # classic requests
}


class PlayIntegrityValidator(AttestationValidator):
    """
    Validator for Android Play Integrity tokens.

    Production mode decodes through Google's decodeIntegrityToken endpoint;
    stub mode accepts any token except ``emulator`` for local testing.
    """

    PLAY_INTEGRITY_API_URL = "https://playintegrity.googleapis.com/v1/{package_name}:decodeIntegrityToken"

    def __init__(self, config: AttestationConfig):
        super().__init__(config)
        self.android_config = config.get_android_config()
        self._access_token: Optional[str] = None
        self._access_token_expiry = 0.0
        self._token_lock = threading.Lock()

    def get_validator_type(self) -> str:
        return "playintegrity"

    def get_platform(self) -> str:
        return "android"

    def _check(self, token: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        if self.android_config["stub_mode"]:
            return self._check_stub(token)

        if not self.is_configured():
            raise ConfigurationError(
                "Play Integrity configuration incomplete - missing package name or Google credentials"
            )

        try:
            access_token = self._get_google_access_token()
            decoded_token = self._decode_integrity_token(token, access_token)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Play Integrity API request failed: {e}")
        except (ValueError, KeyError, jwt.PyJWTError) as e:
            raise ConfigurationError(f"Play Integrity credentials unusable: {e}")

        payload = decoded_token.get("tokenPayloadExternal")
        if not isinstance(payload, dict):
            raise DecodeError("Play Integrity token missing payload")
        self._check_verdict(payload, metadata)

        return {
            "device_recognition_verdict": payload.get("deviceIntegrity", {}).get("deviceRecognitionVerdict", []),
            "app_recognition_verdict": payload.get("appIntegrity", {}).get("appRecognitionVerdict"),
        }

    def _check_stub(self, token: str) -> Dict[str, Any]:
        if token == "emulator" and not self.android_config["stub_allow_emulator"]:
            raise DeviceIntegrityFailed(
                "Emulator tokens not allowed in stub mode",
                stub_mode=True,
                reason="emulator_rejected",
            )
        return {"stub_mode": True, "reason": "stub_accepted"}

    def _check_verdict(self, payload: Dict[str, Any], metadata: Dict[str, Any]) -> None:
        """Package, request binding, device verdict, app verdict; first failure raises."""
        request_details = payload.get("requestDetails", {})
        expected_package = self.android_config["package_name"]
        package_name = request_details.get("requestPackageName")
        if package_name != expected_package:
            raise AppIdMismatch(
                f"Play Integrity package mismatch: expected {expected_package}, got {package_name}"
            )

        for key, field in REQUEST_BINDINGS.items():
            expected = metadata.get(key)
            if not expected:
                continue
            actual = request_details.get(field) or ""
            if not hmac.compare_digest(actual.encode("utf-8"), str(expected).encode("utf-8")):
                raise ChallengeMismatch(f"Play Integrity {key} does not match")

        device_integrity = payload.get("deviceIntegrity", {})
        if "MEETS_DEVICE_INTEGRITY" not in device_integrity.get("deviceRecognitionVerdict", []):
            raise DeviceIntegrityFailed(
                f"Device verdict lacks MEETS_DEVICE_INTEGRITY: {device_integrity.get('deviceRecognitionVerdict', [])}",
                device_integrity=device_integrity,
            )

        app_integrity = payload.get("appIntegrity", {})
        if app_integrity.get("appRecognitionVerdict") != "PLAY_RECOGNIZED":
            raise AppIntegrityFailed(
                f"App not recognized by Play: {app_integrity.get('appRecognitionVerdict')}",
                app_integrity=app_integrity,
            )

    def _get_google_access_token(self) -> str:
        """
        Exchange the service account key for an OAuth2 access token.

        Uses the JWT bearer grant; tokens are reused until shortly before
        they expire.
        """
        with self._token_lock:
            now = time.time()
            if self._access_token and now < self._access_token_expiry - TOKEN_REFRESH_MARGIN:
                return self._access_token

            credentials = self.config.load_google_credentials()
            if not credentials:
                raise ValueError("GOOGLE_APPLICATION_CREDENTIALS is not configured")
            token_uri = credentials.get("token_uri", GOOGLE_TOKEN_URI)
            claims = {
                "iss": credentials["client_email"],
                "scope": PLAY_INTEGRITY_SCOPE,
                "aud": token_uri,
                "iat": int(now),
                "exp": int(now) + TOKEN_LIFETIME,
            }
            headers = {"kid": credentials["private_key_id"]} if credentials.get("private_key_id") else None
            assertion = jwt.encode(claims, credentials["private_key"], algorithm="RS256", headers=headers)

            with httpx.Client(timeout=self.config.api_timeout) as client:
                response = client.post(token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion})
                response.raise_for_status()
                body = response.json()

            self._access_token = body["access_token"]
            self._access_token_expiry = now + int(body.get("expires_in", TOKEN_LIFETIME))
            logger.debug("Obtained Google access token for Play Integrity")
            return self._access_token

    def _decode_integrity_token(self, token: str, access_token: str) -> Dict[str, Any]:
        """
        Decode a Play Integrity token using the Google API.

        Raises:
            DecodeError when Google rejects the token, httpx.HTTPError on
            any other failure
        """
        url = self.PLAY_INTEGRITY_API_URL.format(package_name=self.android_config["package_name"])
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json"
        }

        with httpx.Client(timeout=self.config.api_timeout) as client:
            response = client.post(url, json={"integrityToken": token}, headers=headers)

        if response.status_code in (400, 404):
            logger.warning(f"Play Integrity API rejected token: {response.status_code} - {response.text}")
            raise DecodeError("Play Integrity token could not be decoded")
        if response.status_code != 200:
            logger.error(f"decodeIntegrityToken returned {response.status_code}: {response.text}")
            response.raise_for_status()
        return response.json()

    def is_configured(self) -> bool:
        if self.android_config["stub_mode"]:
            return True

        return all([
            self.android_config["package_name"],
            self.android_config["credentials"]
        ])

    def get_configuration_status(self) -> Dict[str, Any]:
        return {
            "validator_type": self.get_validator_type(),
            "platform": self.get_platform(),
            "stub_mode": self.android_config["stub_mode"],
            "configured": self.is_configured(),
            "has_package_name": bool(self.android_config["package_name"]),
            "has_credentials": bool(self.android_config["credentials"]),
            "stub_allow_emulator": self.android_config["stub_allow_emulator"]
        }

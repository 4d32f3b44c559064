"""
Unit tests for Android Play Integrity validator.
"""

import json
import typing

import jwt
import pytest
from unittest.mock import Mock, patch
import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from device_integrity.services.attestation.android_playintegrity import PlayIntegrityValidator
from device_integrity.services.attestation.config import AttestationConfig
from device_integrity.services.attestation.base import AttestationResultStatus, AttestationValidator

PACKAGE_NAME = "com.example.app"


def _verdict(package_name=PACKAGE_NAME, device=("MEETS_DEVICE_INTEGRITY",),
             app="PLAY_RECOGNIZED", request_hash="hash-123", nonce=None):
    details = {"requestPackageName": package_name, "requestHash": request_hash}
    if nonce is not None:
        details["nonce"] = nonce
    return {
        "tokenPayloadExternal": {
            "requestDetails": details,
            "appIntegrity": {"appRecognitionVerdict": app},
            "deviceIntegrity": {"deviceRecognitionVerdict": list(device)},
        }
    }


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = json.dumps(body)
    return response


@pytest.fixture(scope="module")
def service_account():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    return {
        "type": "service_account",
        "client_email": "verifier@test-project.iam.gserviceaccount.com",
        "private_key_id": "key-1",
        "private_key": pem,
        "token_uri": "https://oauth2.test/token",
        "public_key": key.public_key(),
    }


class TestPlayIntegrityValidatorStub:
    """Stub mode behaviour."""

    @pytest.fixture
    def config(self):
        return AttestationConfig(
            stub_mode=True,
            stub_allow_emulator=False,
            android_package_name=PACKAGE_NAME,
        )

    @pytest.fixture
    def validator(self, config):
        return PlayIntegrityValidator(config)

    def test_get_validator_type(self, validator):
        assert validator.get_validator_type() == "playintegrity"

    def test_get_platform(self, validator):
        assert validator.get_platform() == "android"

    def test_validate_stub_mode_emulator_rejected(self, validator):
        result = validator.validate("emulator")

        assert result.status == AttestationResultStatus.INVALID
        assert "emulator" in result.error_message.lower()
        assert result.metadata["stub_mode"] is True
        assert result.metadata["reason"] == "emulator_rejected"

    def test_validate_stub_mode_emulator_allowed(self):
        config = AttestationConfig(stub_mode=True, stub_allow_emulator=True)
        validator = PlayIntegrityValidator(config)

        result = validator.validate("emulator")

        assert result.status == AttestationResultStatus.VALID
        assert result.metadata["reason"] == "stub_accepted"

    def test_validate_stub_mode_valid_token(self, validator):
        result = validator.validate("valid_token_123", device_id="device-1", metadata={"test_key": "v"})

        assert result.status == AttestationResultStatus.VALID
        assert result.device_id == "device-1"
        assert result.metadata["test_key"] == "v"
        assert result.metadata["stub_mode"] is True

    def test_empty_token(self, validator):
        result = validator.validate("")

        assert result.status == AttestationResultStatus.INVALID
        assert result.error_kind == "MissingField"

    def test_is_configured_in_stub_mode(self, validator):
        assert validator.is_configured() is True

    def test_config_annotation_resolves(self):
        hints = typing.get_type_hints(AttestationValidator.__init__)

        assert hints["config"] is AttestationConfig


class TestPlayIntegrityValidatorProduction:
    """Production validation against mocked Google endpoints."""

    @pytest.fixture
    def config(self, service_account):
        credentials = {k: v for k, v in service_account.items() if k != "public_key"}
        return AttestationConfig(
            stub_mode=False,
            android_package_name=PACKAGE_NAME,
            google_application_credentials=json.dumps(credentials),
            api_timeout=5,
        )

    @pytest.fixture
    def validator(self, config):
        return PlayIntegrityValidator(config)

    def _decode_with(self, mock_client, response):
        mock_client_instance = Mock()
        mock_client_instance.post.return_value = response
        mock_client.return_value.__enter__.return_value = mock_client_instance
        return mock_client_instance

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_validate_production_success(self, mock_client, validator):
        client = self._decode_with(mock_client, _response(body=_verdict()))

        with patch.object(validator, '_get_google_access_token', return_value="test_access_token"):
            result = validator.validate("production_token", metadata={"request_hash": "hash-123"})

        assert result.status == AttestationResultStatus.VALID
        assert result.metadata["app_recognition_verdict"] == "PLAY_RECOGNIZED"
        args, kwargs = client.post.call_args
        assert args[0] == f"https://playintegrity.googleapis.com/v1/{PACKAGE_NAME}:decodeIntegrityToken"
        assert kwargs["json"] == {"integrityToken": "production_token"}
        assert kwargs["headers"]["Authorization"] == "Bearer test_access_token"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_device_integrity_failed(self, mock_client, validator):
        self._decode_with(mock_client, _response(body=_verdict(device=("MEETS_BASIC_INTEGRITY",))))

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            result = validator.validate("production_token")

        assert result.status == AttestationResultStatus.INVALID
        assert result.error_kind == "DeviceIntegrityFailed"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_app_not_recognized(self, mock_client, validator):
        self._decode_with(mock_client, _response(body=_verdict(app="UNRECOGNIZED_VERSION")))

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            result = validator.validate("production_token")

        assert result.status == AttestationResultStatus.INVALID
        assert result.error_kind == "AppIntegrityFailed"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_package_mismatch(self, mock_client, validator):
        self._decode_with(mock_client, _response(body=_verdict(package_name="com.evil.app")))

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            result = validator.validate("production_token")

        assert result.status == AttestationResultStatus.INVALID
        assert result.error_kind == "AppIdMismatch"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_request_hash_mismatch(self, mock_client, validator):
        self._decode_with(mock_client, _response(body=_verdict(request_hash="other")))

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            result = validator.validate("production_token", metadata={"request_hash": "hash-123"})

        assert result.status == AttestationResultStatus.INVALID
        assert result.error_kind == "ChallengeMismatch"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_nonce_checked_for_classic_requests(self, mock_client, validator):
        self._decode_with(mock_client, _response(body=_verdict(nonce="abc")))

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            ok = validator.validate("production_token", metadata={"nonce": "abc"})
            bad = validator.validate("production_token", metadata={"nonce": "xyz"})

        assert ok.is_valid
        assert bad.error_kind == "ChallengeMismatch"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_token_rejected_by_google(self, mock_client, validator):
        self._decode_with(mock_client, _response(status_code=400, body={"error": "INVALID_ARGUMENT"}))

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            result = validator.validate("garbage")

        assert result.status == AttestationResultStatus.INVALID
        assert result.error_kind == "DecodeError"

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_upstream_timeout(self, mock_client, validator):
        mock_client_instance = Mock()
        mock_client_instance.post.side_effect = httpx.TimeoutException("Request timeout")
        mock_client.return_value.__enter__.return_value = mock_client_instance

        with patch.object(validator, '_get_google_access_token', return_value="t"):
            result = validator.validate("production_token")

        assert result.status == AttestationResultStatus.ERROR
        assert result.error_kind == "UpstreamError"
        assert result.retryable is True

    def test_not_configured(self):
        validator = PlayIntegrityValidator(AttestationConfig(stub_mode=False))

        result = validator.validate("production_token")

        assert validator.is_configured() is False
        assert result.status == AttestationResultStatus.ERROR
        assert result.error_kind == "ConfigurationError"

    def test_credentials_file_missing(self, tmp_path):
        config = AttestationConfig(
            stub_mode=False,
            android_package_name=PACKAGE_NAME,
            google_application_credentials=str(tmp_path / "missing.json"),
        )
        validator = PlayIntegrityValidator(config)

        result = validator.validate("production_token")

        assert result.status == AttestationResultStatus.ERROR
        assert result.error_kind == "ConfigurationError"
        assert "missing.json" in result.error_message

    @patch('device_integrity.services.attestation.android_playintegrity.httpx.Client')
    def test_access_token_exchange(self, mock_client, validator, service_account):
        client = self._decode_with(mock_client, _response(body={"access_token": "ya29.token", "expires_in": 3600}))

        first = validator._get_google_access_token()
        second = validator._get_google_access_token()

        assert first == second == "ya29.token"
        assert client.post.call_count == 1
        args, kwargs = client.post.call_args
        assert args[0] == "https://oauth2.test/token"
        assert kwargs["data"]["grant_type"] == "urn:ietf:params:oauth:grant-type:jwt-bearer"
        claims = jwt.decode(
            kwargs["data"]["assertion"],
            service_account["public_key"],
            algorithms=["RS256"],
            audience="https://oauth2.test/token",
        )
        assert claims["iss"] == service_account["client_email"]
        assert claims["scope"] == "https://www.googleapis.com/auth/playintegrity"

    def test_get_configuration_status(self, validator):
        status = validator.get_configuration_status()

        assert status == {
            "validator_type": "playintegrity",
            "platform": "android",
            "stub_mode": False,
            "configured": True,
            "has_package_name": True,
            "has_credentials": True,
            "stub_allow_emulator": False,
        }

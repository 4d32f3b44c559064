"""
Unit tests for KeyDescription parsing.
"""

import pytest

from device_integrity.services.attestation.errors import DecodeError
from device_integrity.services.attestation.key_description import (
    TAG_ORIGIN,
    TAG_ROOT_OF_TRUST,
    KeyDescription,
)

from attestation_factories import (
    der_integer,
    der_octets,
    der_sequence,
    explicit,
    key_description_der,
    root_of_trust,
)


class TestKeyDescription:
    """Test cases for KeyDescription.from_der."""

    def test_parse_top_level_fields(self):
        description = KeyDescription.from_der(key_description_der(b"abc", security_level=2))

        assert description.attestation_version == 200
        assert description.keymint_version == 200
        assert description.attestation_security_level == "strongbox"
        assert description.keymint_security_level == "strongbox"
        assert description.attestation_challenge == b"abc"
        assert description.unique_id == b""
        assert description.is_hardware_backed is True

    def test_software_security_level(self):
        description = KeyDescription.from_der(key_description_der(security_level=0))

        assert description.attestation_security_level == "software"
        assert description.is_hardware_backed is False

    def test_hardware_enforced_list(self):
        hardware = KeyDescription.from_der(key_description_der()).hardware_enforced

        assert hardware.purpose == [2, 3]
        assert hardware.digest == [4]
        assert hardware.algorithm == 3
        assert hardware.key_size == 256
        assert hardware.ec_curve == 1
        assert hardware.origin == 0
        assert hardware.os_version == 140000
        assert hardware.os_patch_level == 202401
        assert hardware.has_tag(TAG_ORIGIN)

    def test_root_of_trust(self):
        root = KeyDescription.from_der(key_description_der()).hardware_enforced.root_of_trust

        assert root.verified_boot_key == b"\x11" * 32
        assert root.device_locked is True
        assert root.verified_boot_state == "verified"
        assert root.verified_boot_hash == b"\x22" * 32

    def test_unlocked_device(self):
        entries = [explicit(TAG_ROOT_OF_TRUST, root_of_trust(locked=False, state=2))]
        root = KeyDescription.from_der(
            key_description_der(hardware_entries=entries)
        ).hardware_enforced.root_of_trust

        assert root.device_locked is False
        assert root.verified_boot_state == "unverified"

    def test_software_enforced_list(self):
        software = KeyDescription.from_der(key_description_der()).software_enforced

        assert software.creation_datetime == 1700000000000
        assert software.attestation_application_id == b"app-id"
        assert software.purpose == []

    def test_unknown_tags_kept_raw(self):
        entries = [explicit(600, der_octets(b"vendor"))]
        hardware = KeyDescription.from_der(key_description_der(hardware_entries=entries)).hardware_enforced

        assert hardware.has_tag(600)
        assert hardware.raw[600] == der_octets(b"vendor")

    def test_challenge_matches(self):
        description = KeyDescription.from_der(key_description_der(b"expected"))

        assert description.challenge_matches(b"expected")
        assert not description.challenge_matches(b"other")

    def test_summary(self):
        summary = KeyDescription.from_der(key_description_der()).summary()

        assert summary == {
            "attestation_version": 200,
            "attestation_security_level": "trusted_environment",
            "keymint_version": 200,
            "keymint_security_level": "trusted_environment",
            "hardware_backed": True,
        }

    def test_too_few_fields(self):
        with pytest.raises(DecodeError):
            KeyDescription.from_der(der_sequence(der_integer(3), der_integer(1)))

    def test_not_a_sequence(self):
        with pytest.raises(DecodeError):
            KeyDescription.from_der(der_octets(b"nope"))

    def test_truncated(self):
        with pytest.raises(DecodeError):
            KeyDescription.from_der(key_description_der()[:-5])

    def test_trailing_data(self):
        with pytest.raises(DecodeError):
            KeyDescription.from_der(key_description_der() + b"\x00")

"""
Factories for real key attestation chains and hardware key assertions.
"""

import base64
import struct
from datetime import datetime, timedelta, timezone

import cbor2
from asn1crypto import core as asn1_core
from asn1crypto import parser as asn1_parser
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

KEY_ATTESTATION_OID = "1.3.6.1.4.1.11129.2.1.17"
TEAM_ID = "ABCDE12345"
BUNDLE_ID = "com.example.app"


# DER helpers

def tlv(tag, contents, class_=0, constructed=False):
    return asn1_parser.emit(class_, 1 if constructed else 0, tag, contents)


def der_integer(value):
    return asn1_core.Integer(value).dump()


def der_enumerated(value):
    return tlv(10, asn1_core.Integer(value).contents)


def der_octets(value):
    return asn1_core.OctetString(value).dump()


def der_sequence(*items):
    return tlv(16, b"".join(items), constructed=True)


def der_set(*items):
    return tlv(17, b"".join(items), constructed=True)


def explicit(tag, inner):
    return tlv(tag, inner, class_=2, constructed=True)


def root_of_trust(locked=True, state=0):
    return der_sequence(
        der_octets(b"\x11" * 32),
        asn1_core.Boolean(locked).dump(),
        der_enumerated(state),
        der_octets(b"\x22" * 32),
    )


def key_description_der(challenge=b"challenge", security_level=1, hardware_entries=None):
    software = der_sequence(
        explicit(701, der_integer(1700000000000)),
        explicit(709, der_octets(b"app-id")),
    )
    if hardware_entries is None:
        hardware_entries = [
            explicit(1, der_set(der_integer(2), der_integer(3))),
            explicit(2, der_integer(3)),
            explicit(3, der_integer(256)),
            explicit(5, der_set(der_integer(4))),
            explicit(10, der_integer(1)),
            explicit(702, der_integer(0)),
            explicit(704, root_of_trust()),
            explicit(705, der_integer(140000)),
            explicit(706, der_integer(202401)),
        ]
    return der_sequence(
        der_integer(200),
        der_enumerated(security_level),
        der_integer(200),
        der_enumerated(security_level),
        der_octets(challenge),
        der_octets(b""),
        software,
        der_sequence(*hardware_entries),
    )


# Certificates

def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_certificate(subject_key, subject, issuer_key, issuer, serial=None,
                     not_before=None, not_after=None, extension=None, ca=False):
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(_name(issuer))
        .public_key(subject_key.public_key())
        .serial_number(serial or x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    if extension is not None:
        builder = builder.add_extension(
            x509.UnrecognizedExtension(x509.ObjectIdentifier(KEY_ATTESTATION_OID), extension),
            critical=False,
        )
    return builder.sign(issuer_key, hashes.SHA256())


def encode_chain(certificates):
    entries = [
        base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii")
        for cert in certificates
    ]
    return base64.b64encode(",".join(entries).encode("ascii")).decode("ascii")


def public_key_pem(key):
    return key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


class ChainFactory:
    """Root, intermediate and leaf keys with helpers to mint chains."""

    def __init__(self):
        self.root_key = ec.generate_private_key(ec.SECP256R1())
        self.intermediate_key = ec.generate_private_key(ec.SECP256R1())
        self.leaf_key = ec.generate_private_key(ec.SECP256R1())
        self.root = make_certificate(self.root_key, "Test Root", self.root_key, "Test Root",
                                     serial=0x1000, ca=True)
        self.intermediate = make_certificate(self.intermediate_key, "Test Intermediate",
                                             self.root_key, "Test Root", serial=0x2000, ca=True)

    @property
    def root_public_key(self):
        return self.root_key.public_key()

    @property
    def root_public_key_pem(self):
        return public_key_pem(self.root_key)

    @property
    def leaf_public_key_pem(self):
        return public_key_pem(self.leaf_key)

    def leaf(self, extension=None, serial=0x3000, **kwargs):
        return make_certificate(self.leaf_key, "Android Keystore Key", self.intermediate_key,
                                "Test Intermediate", serial=serial, extension=extension, **kwargs)

    def certificates(self, challenge=b"challenge", **kwargs):
        return [self.leaf(extension=key_description_der(challenge), **kwargs),
                self.intermediate, self.root]

    def chain(self, challenge=b"challenge", **kwargs):
        return encode_chain(self.certificates(challenge, **kwargs))


# Assertions

def authenticator_data(counter, team_id=TEAM_ID, bundle_id=BUNDLE_ID, flags=0x01):
    digest = hashes.Hash(hashes.SHA256())
    digest.update(f"{team_id}.{bundle_id}".encode("utf-8"))
    return digest.finalize() + bytes([flags]) + struct.pack(">I", counter)


def sign_assertion(private_key, auth_data, payload):
    inner = hashes.Hash(hashes.SHA256())
    inner.update(payload)
    outer = hashes.Hash(hashes.SHA256())
    outer.update(auth_data + inner.finalize())
    return private_key.sign(outer.finalize(), ec.ECDSA(hashes.SHA256()))


def encode_assertion_cbor(signature, auth_data):
    raw = cbor2.dumps({"signature": signature, "authenticatorData": auth_data})
    return base64.b64encode(raw).decode("ascii")


class AssertionFactory:
    """A device key that signs assertions for the test app."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.public_key_pem = public_key_pem(self.private_key)

    def sign(self, counter, payload, team_id=TEAM_ID, bundle_id=BUNDLE_ID):
        auth_data = authenticator_data(counter, team_id, bundle_id)
        return sign_assertion(self.private_key, auth_data, payload), auth_data

    def encoded(self, counter, payload, **kwargs):
        signature, auth_data = self.sign(counter, payload, **kwargs)
        return encode_assertion_cbor(signature, auth_data)

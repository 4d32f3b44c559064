"""
Pydantic schemas for the attestation HTTP endpoints.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from ..services.attestation.assertion import AssertionEncoding


class NonceResponse(BaseModel):
    """Challenge to embed in the next attestation or assertion."""

    nonce: str = Field(..., description="One-time challenge")


class AndroidAttestationRequest(BaseModel):
    """Android hardware key attestation chain plus the attested device key."""

    model_config = ConfigDict(populate_by_name=True)

    attestation: str = Field(..., description="base64 of comma separated base64 DER certificates, leaf first")
    hardware_key_tag: str = Field(..., alias="hardwareKeyTag", description="Key identifier")
    public_key: str = Field(..., alias="publicKey", description="PEM public key of the attested key")
    challenge: Optional[str] = Field(None, description="Challenge issued by /attest/nonce")


class KeyRegistrationRequest(BaseModel):
    """Key attested out of band, e.g. by an iOS attestation object."""

    model_config = ConfigDict(populate_by_name=True)

    hardware_key_tag: str = Field(..., alias="hardwareKeyTag", description="Key identifier")
    public_key: str = Field(..., alias="publicKey", description="PEM public key")
    platform: str = Field("ios", description="Platform: 'ios' or 'android'")


class AssertionRequest(BaseModel):
    """Assertion produced by a registered hardware key."""

    model_config = ConfigDict(populate_by_name=True)

    hardware_key_tag: str = Field(..., alias="hardwareKeyTag", description="Key identifier")
    assertion: str = Field(..., description="base64 encoded assertion")
    payload: str = Field(..., description="Client data that was signed")
    encoding: AssertionEncoding = Field(AssertionEncoding.CBOR, description="Assertion transport encoding")
    challenge: Optional[str] = Field(None, description="Challenge issued by /attest/nonce")


class AssertionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sign_count: int = Field(..., alias="signCount", description="Accepted counter value")


class IntegrityTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    integrity_token: str = Field(..., alias="integrityToken", description="Play Integrity token")
    request_hash: Optional[str] = Field(None, alias="requestHash", description="Expected request hash")


class VerificationResponse(BaseModel):
    """Yes/no answer returned to clients. Verdict details stay on the server."""

    result: str = Field(..., description="Verification status: 'valid'")

